"""
Configuration management for sound-share.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml, with secrets optionally
supplied through environment variables (or a .env file).

The configuration file contains:
    - Spotify application credentials and OAuth callback settings
    - Which secure credential store backend to use
    - Which real-time datastore backend to use (Firebase, SQLite, memory)
    - Log directory and console verbosity

Configuration File Location:
    config.yaml in the current working directory, unless an explicit
    path is given. A missing file is not an error as long as the required
    secrets come from the environment.

Environment Variables (take precedence over the file):
    SPOTIFY_CLIENT_ID
    SPOTIFY_CLIENT_SECRET
    SPOTIFY_REDIRECT_URI
    SOUND_SHARE_FIREBASE_URL
    SOUND_SHARE_FIREBASE_AUTH

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"
      redirect_uri: "http://127.0.0.1:8888/callback"

    credentials:
      backend: keyring          # keyring, file, memory

    datastore:
      backend: firebase         # firebase, sqlite, memory
      url: "https://your-project-default-rtdb.firebaseio.com"

    logging:
      directory: "~/.sound_share/logs"
      level: INFO
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from sound_share.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_HOME = Path("~/.sound_share")
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"

CREDENTIAL_BACKENDS = ("keyring", "file", "memory")
DATASTORE_BACKENDS = ("firebase", "sqlite", "memory")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify application configuration.

    These credentials are obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret. Used only for
                       the server-to-server token exchange (Basic auth).
        redirect_uri: OAuth callback URL registered for the application.
                      A localhost/127.0.0.1 URI enables the built-in
                      callback server; anything else falls back to manual
                      code entry.
        show_dialog: Force the consent screen even if already approved.
        request_timeout: Seconds before HTTP calls to Spotify give up.
        expiry_margin_seconds: Refresh this many seconds before the real expiry.
    """
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    show_dialog: bool = True
    request_timeout: float = 10.0
    expiry_margin_seconds: int = 0


@dataclass(frozen=True)
class CredentialsConfig:
    """
    Secure credential storage configuration.

    Attributes:
        backend: 'keyring' (OS secret service), 'file' (owner-only JSON file)
                 or 'memory' (process lifetime only, for tests and demos).
        service_name: Keyring service the three secrets are filed under.
        file_path: Location of the JSON file for the 'file' backend.
    """
    backend: str
    service_name: str
    file_path: Path


@dataclass(frozen=True)
class DatastoreConfig:
    """
    Real-time datastore configuration.

    Attributes:
        backend: 'firebase' (shared remote tree), 'sqlite' (local file) or
                 'memory' (process lifetime only).
        url: Firebase Realtime Database URL (firebase backend only).
        auth: Database secret or ID token appended as ?auth= (optional).
        sqlite_path: Database file for the sqlite backend.
        request_timeout: Seconds before Firebase REST calls give up.
    """
    backend: str
    url: str | None
    auth: str | None
    sqlite_path: Path
    request_timeout: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        directory: Where log files are written (expanded, absolute).
        level: Console log level name.
    """
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Datastore: {config.datastore.backend}")
    """
    spotify: SpotifyConfig
    credentials: CredentialsConfig
    datastore: DatastoreConfig
    logging: LoggingConfig


def load_config(config_path: Path | None = None, env_file: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.

    Args:
        config_path: Optional explicit path to config file. An explicit path
                     that does not exist is an error; the implicit
                     ./config.yaml is optional.
        env_file: Optional .env file. Defaults to python-dotenv's lookup.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the file has invalid YAML, required secrets are
                     missing from both file and environment, or a value is
                     invalid.

    Behavior:
        1. Load .env into the process environment (without overriding)
        2. Read and parse YAML content if a file is present
        3. Overlay environment variables for secrets
        4. Validate each section, applying defaults
        5. Create and return frozen Config object
    """
    load_dotenv(dotenv_path=env_file)

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    for section in ("spotify", "credentials", "datastore", "logging"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    return Config(
        spotify=_parse_spotify_config(raw_config.get("spotify") or {}),
        credentials=_parse_credentials_config(raw_config.get("credentials") or {}),
        datastore=_parse_datastore_config(raw_config.get("datastore") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    # An empty file parses to None
    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    return raw_config


def _env_or(name: str, fallback: Any) -> Any:
    value = os.environ.get(name)
    if value is not None and value.strip():
        return value.strip()
    return fallback


def _require_string(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"'{field}' must be a non-empty string",
            details={"field": field}
        )
    return value.strip()


def _optional_string(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(
            f"'{field}' must be a string or null",
            details={"field": field}
        )
    return value.strip() or None


def _positive_number(value: Any, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            f"'{field}' must be a positive number",
            details={"field": field, "value": value}
        )
    return float(value)


def _expand_path(value: Any, field: str, default: Path) -> Path:
    if value is None:
        return default.expanduser().resolve()
    return Path(_require_string(value, field)).expanduser().resolve()


def _parse_spotify_config(section: dict[str, Any]) -> SpotifyConfig:
    """
    Parse the 'spotify' section, overlaying SPOTIFY_* environment variables.

    Raises:
        ConfigError: If client_id or client_secret is missing everywhere,
                     or a numeric/boolean field has the wrong type.
    """
    client_id = _require_string(
        _env_or("SPOTIFY_CLIENT_ID", section.get("client_id")), "spotify.client_id"
    )
    client_secret = _require_string(
        _env_or("SPOTIFY_CLIENT_SECRET", section.get("client_secret")), "spotify.client_secret"
    )
    redirect_uri = _require_string(
        _env_or("SPOTIFY_REDIRECT_URI", section.get("redirect_uri", DEFAULT_REDIRECT_URI)),
        "spotify.redirect_uri"
    )

    show_dialog = section.get("show_dialog", True)
    if not isinstance(show_dialog, bool):
        raise ConfigError(
            "'spotify.show_dialog' must be true or false",
            details={"field": "spotify.show_dialog", "value": show_dialog}
        )

    margin = section.get("expiry_margin_seconds", 0)
    if isinstance(margin, bool) or not isinstance(margin, int) or margin < 0:
        raise ConfigError(
            "'spotify.expiry_margin_seconds' must be a non-negative integer",
            details={"field": "spotify.expiry_margin_seconds", "value": margin}
        )

    return SpotifyConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        show_dialog=show_dialog,
        request_timeout=_positive_number(
            section.get("request_timeout"), "spotify.request_timeout", 10.0
        ),
        expiry_margin_seconds=margin,
    )


def _parse_credentials_config(section: dict[str, Any]) -> CredentialsConfig:
    backend = section.get("backend", "keyring")
    if backend not in CREDENTIAL_BACKENDS:
        raise ConfigError(
            f"'credentials.backend' must be one of: {', '.join(CREDENTIAL_BACKENDS)}",
            details={"field": "credentials.backend", "value": backend}
        )

    return CredentialsConfig(
        backend=backend,
        service_name=_require_string(
            section.get("service_name", "sound-share"), "credentials.service_name"
        ),
        file_path=_expand_path(
            section.get("file_path"), "credentials.file_path",
            DEFAULT_HOME / "credentials.json"
        ),
    )


def _parse_datastore_config(section: dict[str, Any]) -> DatastoreConfig:
    """
    Parse the 'datastore' section.

    The Firebase backend requires a URL (from the file or
    SOUND_SHARE_FIREBASE_URL); the other backends ignore url/auth.
    """
    backend = section.get("backend", "sqlite")
    if backend not in DATASTORE_BACKENDS:
        raise ConfigError(
            f"'datastore.backend' must be one of: {', '.join(DATASTORE_BACKENDS)}",
            details={"field": "datastore.backend", "value": backend}
        )

    url = _optional_string(
        _env_or("SOUND_SHARE_FIREBASE_URL", section.get("url")), "datastore.url"
    )
    auth = _optional_string(
        _env_or("SOUND_SHARE_FIREBASE_AUTH", section.get("auth")), "datastore.auth"
    )

    if backend == "firebase":
        if url is None:
            raise ConfigError(
                "'datastore.url' is required for the firebase backend",
                details={"field": "datastore.url"}
            )
        if not url.startswith("https://") and not url.startswith("http://"):
            raise ConfigError(
                "'datastore.url' must be an http(s) URL",
                details={"field": "datastore.url", "value": url}
            )
        url = url.rstrip("/")

    return DatastoreConfig(
        backend=backend,
        url=url,
        auth=auth,
        sqlite_path=_expand_path(
            section.get("sqlite_path"), "datastore.sqlite_path",
            DEFAULT_HOME / "datastore.db"
        ),
        request_timeout=_positive_number(
            section.get("request_timeout"), "datastore.request_timeout", 10.0
        ),
    )


def _parse_logging_config(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(
            f"'logging.level' must be one of: {', '.join(LOG_LEVELS)}",
            details={"field": "logging.level", "value": level}
        )
    return LoggingConfig(
        directory=_expand_path(
            section.get("directory"), "logging.directory", DEFAULT_HOME / "logs"
        ),
        level=level,
    )
