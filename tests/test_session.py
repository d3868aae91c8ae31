"""Test session wiring"""

from unittest.mock import Mock

import pytest

from sound_share.auth.callback import AuthorizationResponse
from sound_share.auth.credentials import FileCredentialStore, MemoryCredentialStore
from sound_share.core.config import (
    Config,
    CredentialsConfig,
    DatastoreConfig,
    LoggingConfig,
    SpotifyConfig,
)
from sound_share.core.exceptions import ConfigError
from sound_share.datastore.firebase import FirebaseDatastore
from sound_share.datastore.memory import MemoryDatastore
from sound_share.datastore.sqlite import SqliteDatastore
from sound_share.session import SessionContext, create_credential_store, create_datastore


def make_config(temp_dir, credentials="memory", datastore="memory", url=None) -> Config:
    return Config(
        spotify=SpotifyConfig(client_id="cid", client_secret="secret"),
        credentials=CredentialsConfig(credentials, "sound-share-test", temp_dir / "credentials.json"),
        datastore=DatastoreConfig(datastore, url, None, temp_dir / "datastore.db"),
        logging=LoggingConfig(temp_dir / "logs"),
    )


class TestBackendFactories:
    """Test create_credential_store() and create_datastore()"""

    def test_credential_backends(self, temp_dir):
        assert isinstance(create_credential_store(make_config(temp_dir).credentials), MemoryCredentialStore)
        assert isinstance(
            create_credential_store(make_config(temp_dir, credentials="file").credentials),
            FileCredentialStore
        )

    def test_datastore_backends(self, temp_dir):
        sqlite_store = create_datastore(make_config(temp_dir, datastore="sqlite").datastore)
        firebase = create_datastore(
            make_config(temp_dir, datastore="firebase", url="https://x.firebaseio.com").datastore
        )
        try:
            assert isinstance(sqlite_store, SqliteDatastore)
            assert isinstance(firebase, FirebaseDatastore)
            assert isinstance(create_datastore(make_config(temp_dir).datastore), MemoryDatastore)
        finally:
            sqlite_store.close()
            firebase.close()

    def test_unknown_backend(self, temp_dir):
        with pytest.raises(ConfigError):
            create_datastore(make_config(temp_dir, datastore="mongodb").datastore)
        with pytest.raises(ConfigError):
            create_credential_store(make_config(temp_dir, credentials="vault").credentials)


class TestSessionContext:
    """Test SessionContext"""

    def test_services_share_the_datastore(self, store, alice):
        catalog = Mock()
        catalog.current_identity.return_value = alice
        session = SessionContext(manager=Mock(), catalog=catalog, datastore=store)

        session.graph.send_friend_request("bob")
        session.reviews.add_review("t1", "track", 5)

        assert store.get("users/bob/friendRequests/alice").exists()
        assert len(session.reviews.list_reviews()) == 1

    def test_login_creates_user_record(self, temp_dir, store):
        """After a successful login the user record is bootstrapped"""
        consent = Mock()
        consent.run.return_value = AuthorizationResponse(code="code")
        session = SessionContext.from_config(
            make_config(temp_dir),
            authorization_session=consent,
            datastore=store,
        )
        token_reply = Mock(status_code=200)
        token_reply.json.return_value = {
            "access_token": "a", "refresh_token": "r", "expires_in": 3600
        }
        session.manager._http = Mock()
        session.manager._http.post.return_value = token_reply
        session.catalog.client = Mock()
        session.catalog.client.current_user_profile.return_value = {"id": "u1", "display_name": "Ann"}

        session.manager.authenticate()

        assert store.get("users/u1/name").value == "Ann"
        session.catalog.client.current_user_profile.assert_called_with("a")

    def test_context_manager_closes_datastore(self, store):
        with SessionContext(manager=Mock(), catalog=Mock(), datastore=store):
            pass
        assert store._closed
