"""
Core module for sound-share.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - logger: Logging system with console, file and user notice outputs

Usage:
    from sound_share.core import (
        Config, load_config,
        setup_logging, get_logger,
        SoundShareError, ConfigError
    )
"""

from sound_share.core.config import (
    Config,
    CredentialsConfig,
    DatastoreConfig,
    LoggingConfig,
    SpotifyConfig,
    load_config,
)
from sound_share.core.exceptions import (
    AuthCancelled,
    AuthError,
    AuthExchangeFailed,
    CatalogRequestFailed,
    ConfigError,
    CredentialStoreError,
    DatastoreError,
    GraphWriteFailed,
    InvalidReview,
    NotAuthenticated,
    RefreshFailed,
    RefreshInvalid,
    ReviewError,
    ReviewWriteFailed,
    SoundShareError,
)
from sound_share.core.logger import (
    get_logger,
    get_notice_board,
    log_user_notice,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "CredentialsConfig",
    "DatastoreConfig",
    "LoggingConfig",
    "load_config",
    # Exceptions
    "SoundShareError",
    "ConfigError",
    "CredentialStoreError",
    "AuthError",
    "NotAuthenticated",
    "AuthCancelled",
    "AuthExchangeFailed",
    "RefreshFailed",
    "RefreshInvalid",
    "CatalogRequestFailed",
    "DatastoreError",
    "GraphWriteFailed",
    "ReviewError",
    "InvalidReview",
    "ReviewWriteFailed",
    # Logger
    "setup_logging",
    "get_logger",
    "get_notice_board",
    "log_user_notice",
    "shutdown_logging",
]
