"""
Session context: the object graph behind every command.

One SessionContext is built per CLI invocation from the loaded Config and
passed to whatever needs it. It owns the credential store, the token
manager, the catalog and the datastore handle, and wires the services on
top of them. Nothing in sound-share is a module-level singleton.

Usage:
    config = load_config()
    with SessionContext.from_config(config) as session:
        session.manager.authenticate()
        print(session.graph.list_friends())
"""

from sound_share.auth.callback import AuthorizationSession
from sound_share.auth.credentials import (
    Credential,
    FileCredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    SecureCredentialStore,
)
from sound_share.auth.tokens import TokenLifecycleManager
from sound_share.catalog.authorized import AuthorizedCatalog
from sound_share.catalog.client import MusicCatalogClient
from sound_share.catalog.models import UserIdentity
from sound_share.core.config import Config, CredentialsConfig, DatastoreConfig
from sound_share.core.exceptions import ConfigError
from sound_share.core.logger import get_logger
from sound_share.datastore.base import Datastore
from sound_share.datastore.firebase import FirebaseDatastore
from sound_share.datastore.memory import MemoryDatastore
from sound_share.datastore.sqlite import SqliteDatastore
from sound_share.reviews import ReviewStore
from sound_share.social.directory import UserDirectory
from sound_share.social.graph import SocialGraphService


logger = get_logger(__name__)


def create_credential_store(config: CredentialsConfig) -> SecureCredentialStore:
    """Instantiate the configured credential store backend."""
    if config.backend == "keyring":
        return KeyringCredentialStore(config.service_name)
    if config.backend == "file":
        return FileCredentialStore(config.file_path)
    if config.backend == "memory":
        return MemoryCredentialStore()
    raise ConfigError(
        f"Unknown credential backend '{config.backend}'",
        details={"field": "credentials.backend", "value": config.backend}
    )


def create_datastore(config: DatastoreConfig) -> Datastore:
    """Instantiate the configured datastore backend."""
    if config.backend == "firebase":
        if not config.url:
            raise ConfigError(
                "'datastore.url' is required for the firebase backend",
                details={"field": "datastore.url"}
            )
        return FirebaseDatastore(
            config.url, auth=config.auth, request_timeout=config.request_timeout
        )
    if config.backend == "sqlite":
        return SqliteDatastore(config.sqlite_path)
    if config.backend == "memory":
        return MemoryDatastore()
    raise ConfigError(
        f"Unknown datastore backend '{config.backend}'",
        details={"field": "datastore.backend", "value": config.backend}
    )


class SessionContext:
    """
    Explicitly constructed holder of the per-run services.

    Attributes:
        config: Loaded configuration (None when built from parts in tests).
        manager: Token lifecycle manager.
        catalog: Catalog bound to the manager's credential.
        datastore: Shared datastore handle.
        directory: User records.
        graph: Friend graph service.
        reviews: Review store.
    """

    def __init__(
        self,
        manager: TokenLifecycleManager,
        catalog: AuthorizedCatalog,
        datastore: Datastore,
        config: Config | None = None
    ) -> None:
        self.config = config
        self.manager = manager
        self.catalog = catalog
        self.datastore = datastore
        self.directory = UserDirectory(datastore)
        self.graph = SocialGraphService(datastore, self.identity, self.directory)
        self.reviews = ReviewStore(datastore, self.identity)

        manager.add_post_authentication_hook(self._bootstrap_user_record)

    @classmethod
    def from_config(
        cls,
        config: Config,
        authorization_session: AuthorizationSession | None = None,
        credential_store: SecureCredentialStore | None = None,
        datastore: Datastore | None = None
    ) -> "SessionContext":
        """
        Build every service from configuration.

        The optional arguments replace the configured backends (tests,
        alternative consent flows).
        """
        store = credential_store or create_credential_store(config.credentials)
        manager = TokenLifecycleManager(
            client_id=config.spotify.client_id,
            client_secret=config.spotify.client_secret,
            redirect_uri=config.spotify.redirect_uri,
            store=store,
            session=authorization_session,
            show_dialog=config.spotify.show_dialog,
            request_timeout=config.spotify.request_timeout,
            expiry_margin_ms=config.spotify.expiry_margin_seconds * 1000,
        )
        catalog = AuthorizedCatalog(
            manager, MusicCatalogClient(request_timeout=config.spotify.request_timeout)
        )
        return cls(
            manager=manager,
            catalog=catalog,
            datastore=datastore or create_datastore(config.datastore),
            config=config,
        )

    def identity(self) -> UserIdentity:
        """The logged-in user, fetched fresh from the catalog."""
        return self.catalog.current_identity()

    def _bootstrap_user_record(self, credential: Credential) -> None:
        identity = self.identity()
        self.directory.ensure_user_record(identity)

    def close(self) -> None:
        """Release the datastore (stops open streams)."""
        self.datastore.close()

    def __enter__(self) -> "SessionContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
