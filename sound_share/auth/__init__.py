"""
Spotify login and credential handling for sound-share.

    - credentials: Secure storage of the three credential fields
    - callback: Interactive consent step (browser + local callback server)
    - tokens: Token lifecycle manager (login, refresh, logout)
"""

from sound_share.auth.callback import (
    SCOPES,
    AuthorizationResponse,
    LocalCallbackSession,
    ManualCodeSession,
)
from sound_share.auth.credentials import (
    Credential,
    FileCredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    SecureCredentialStore,
)
from sound_share.auth.tokens import AuthState, TokenLifecycleManager

__all__ = [
    "SCOPES",
    "AuthorizationResponse",
    "LocalCallbackSession",
    "ManualCodeSession",
    "Credential",
    "FileCredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "SecureCredentialStore",
    "AuthState",
    "TokenLifecycleManager",
]
