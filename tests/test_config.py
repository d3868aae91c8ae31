"""Test configuration loading"""

from pathlib import Path

import pytest

from sound_share.core.config import DEFAULT_REDIRECT_URI, load_config
from sound_share.core.exceptions import ConfigError


ENV_VARS = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "SPOTIFY_REDIRECT_URI",
    "SOUND_SHARE_FIREBASE_URL",
    "SOUND_SHARE_FIREBASE_AUTH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        # setenv first so values loaded from .env are undone after the test
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def write_config(directory: Path, content: str) -> Path:
    path = directory / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test load_config()"""

    def test_minimal_file_uses_defaults(self, temp_dir):
        """Only the Spotify secrets are required"""
        path = write_config(temp_dir, """
spotify:
  client_id: abc
  client_secret: xyz
""")
        config = load_config(path, env_file=temp_dir / ".env")

        assert config.spotify.client_id == "abc"
        assert config.spotify.redirect_uri == DEFAULT_REDIRECT_URI
        assert config.spotify.expiry_margin_seconds == 0
        assert config.credentials.backend == "keyring"
        assert config.datastore.backend == "sqlite"
        assert config.logging.level == "INFO"
        assert config.logging.directory.is_absolute()

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        """SPOTIFY_* variables win over the file"""
        path = write_config(temp_dir, """
spotify:
  client_id: from-file
  client_secret: from-file
""")
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "from-env")

        config = load_config(path, env_file=temp_dir / ".env")

        assert config.spotify.client_id == "from-env"
        assert config.spotify.client_secret == "from-file"

    def test_dotenv_file_is_loaded(self, temp_dir, monkeypatch):
        """Secrets can live in a .env file"""
        env_file = temp_dir / ".env"
        env_file.write_text("SPOTIFY_CLIENT_ID=dotenv-id\nSPOTIFY_CLIENT_SECRET=dotenv-secret\n")
        monkeypatch.chdir(temp_dir)

        config = load_config(env_file=env_file)

        assert config.spotify.client_id == "dotenv-id"
        assert config.spotify.client_secret == "dotenv-secret"

    def test_missing_secret_raises(self, temp_dir):
        """No client secret anywhere is a ConfigError"""
        path = write_config(temp_dir, "spotify:\n  client_id: abc\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path, env_file=temp_dir / ".env")
        assert exc_info.value.details["field"] == "spotify.client_secret"

    def test_explicit_missing_file_raises(self, temp_dir):
        """An explicit path must exist"""
        with pytest.raises(ConfigError):
            load_config(temp_dir / "nope.yaml", env_file=temp_dir / ".env")

    def test_invalid_yaml_raises(self, temp_dir):
        """Broken YAML is reported, not crashed on"""
        path = write_config(temp_dir, "spotify: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path, env_file=temp_dir / ".env")

    def test_unknown_backend_raises(self, temp_dir):
        """Backend names are validated"""
        path = write_config(temp_dir, """
spotify: {client_id: a, client_secret: b}
datastore: {backend: mongodb}
""")
        with pytest.raises(ConfigError, match="datastore.backend"):
            load_config(path, env_file=temp_dir / ".env")

    def test_firebase_requires_url(self, temp_dir):
        """The firebase backend needs a database URL"""
        path = write_config(temp_dir, """
spotify: {client_id: a, client_secret: b}
datastore: {backend: firebase}
""")
        with pytest.raises(ConfigError, match="datastore.url"):
            load_config(path, env_file=temp_dir / ".env")

    def test_firebase_url_from_environment(self, temp_dir, monkeypatch):
        """The database URL may come from the environment"""
        path = write_config(temp_dir, """
spotify: {client_id: a, client_secret: b}
datastore: {backend: firebase}
""")
        monkeypatch.setenv("SOUND_SHARE_FIREBASE_URL", "https://demo.firebaseio.com/")

        config = load_config(path, env_file=temp_dir / ".env")

        assert config.datastore.url == "https://demo.firebaseio.com"

    def test_invalid_margin_raises(self, temp_dir):
        """expiry_margin_seconds must be a non-negative integer"""
        path = write_config(temp_dir, """
spotify: {client_id: a, client_secret: b, expiry_margin_seconds: -5}
""")
        with pytest.raises(ConfigError):
            load_config(path, env_file=temp_dir / ".env")

    def test_section_must_be_mapping(self, temp_dir):
        """A section that isn't a dictionary is rejected"""
        path = write_config(temp_dir, """
spotify: {client_id: a, client_secret: b}
logging: verbose
""")
        with pytest.raises(ConfigError, match="logging"):
            load_config(path, env_file=temp_dir / ".env")
