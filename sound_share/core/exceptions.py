"""
Exception classes for sound-share.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus a details dictionary
so that callers can log context without parsing strings.

Exception Hierarchy:
    SoundShareError (base)
        ConfigError - Configuration file issues
        CredentialStoreError - Secure local storage failures
        AuthError - Authorization server and session issues
            NotAuthenticated - No stored credential
            AuthCancelled - User dismissed the consent screen
            AuthExchangeFailed - Authorization code could not be exchanged
            RefreshFailed - Transient refresh failure (credential kept)
                RefreshInvalid - Refresh token rejected (credential wiped)
        CatalogRequestFailed - Non-2xx answer from the music catalog API
        DatastoreError - Real-time datastore read/write failures
        GraphWriteFailed - A friend-graph mutation stopped midway
        ReviewError - Review store issues
            InvalidReview - Rating/text/item failed validation
            ReviewWriteFailed - Datastore error while saving/deleting
"""


class SoundShareError(Exception):
    """
    Base exception for all sound-share errors.

    All custom exceptions in this project inherit from this class,
    allowing the CLI to catch every expected failure at the command
    boundary with a single except clause.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., user id, path).

    Example:
        try:
            graph.approve_friend_request("u1")
        except SoundShareError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'path': Datastore path involved in the error
                     - 'http_status': HTTP status returned by a remote API
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SoundShareError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml has invalid YAML syntax
        - Required fields missing (client_id, client_secret)
        - Unknown backend name for credentials or datastore

    Example:
        raise ConfigError(
            "'spotify.client_id' must be a non-empty string",
            details={'field': 'spotify.client_id'}
        )
    """
    pass


class CredentialStoreError(SoundShareError):
    """
    Raised when the secure credential store cannot be read or written.

    Common causes:
        - No keyring backend available on this machine
        - Credential file not writable
    """
    pass


class AuthError(SoundShareError):
    """Base class for authorization server and login session failures."""
    pass


class NotAuthenticated(AuthError):
    """
    Raised when an operation needs a credential and none is stored.

    The user has to run the interactive login first.
    """
    pass


class AuthCancelled(AuthError):
    """
    Raised when the user dismisses the interactive authorization session.

    Not retried. The application stays logged out.
    """
    pass


class AuthExchangeFailed(AuthError):
    """
    Raised when the authorization code cannot be exchanged for tokens.

    Common causes:
        - Authorization server returned an error body
        - Redirect URI mismatch between authorize and token calls
        - State parameter mismatch on the callback
        - Network failure during the exchange

    Nothing is persisted when this is raised.
    """
    pass


class RefreshFailed(AuthError):
    """
    Raised when a refresh attempt fails for a transient reason.

    The stored credential is kept so that a later call can try again.

    Common causes:
        - Network timeout
        - 5xx from the token endpoint
        - Response missing access_token
    """
    pass


class RefreshInvalid(RefreshFailed):
    """
    Raised when the authorization server rejects the refresh token.

    The credential manager wipes all stored credential fields before
    raising this, since there is no way to recover without logging in again.

    Example:
        raise RefreshInvalid(
            "Refresh token rejected by authorization server",
            details={'error': 'invalid_grant', 'http_status': 400}
        )
    """
    pass


class CatalogRequestFailed(SoundShareError):
    """
    Raised when the music catalog API answers with a non-success status.

    The client never retries. Callers decide whether a 401 is worth a
    refresh-and-retry or whether to surface the error.

    Attributes:
        http_status: HTTP status code (0 when no response was received).
        body: Response body or error text from the API.
    """

    def __init__(
        self,
        message: str,
        http_status: int = 0,
        body: str = "",
        details: dict | None = None
    ) -> None:
        merged = {"http_status": http_status, "body": body}
        merged.update(details or {})
        super().__init__(message, merged)
        self.http_status = http_status
        self.body = body

    @property
    def is_unauthorized(self) -> bool:
        """True when the API rejected the bearer token (401)."""
        return self.http_status == 401

    @property
    def is_rate_limit(self) -> bool:
        """True when the API asked us to slow down (429)."""
        return self.http_status == 429


class DatastoreError(SoundShareError):
    """
    Raised when the real-time datastore fails a read, write or query.

    Common causes:
        - Network failure talking to the remote database
        - Permission denied by database rules
        - Invalid key (contains '.', '$', '#', '[', ']' or '/')
        - Local database file corrupted
    """
    pass


class GraphWriteFailed(SoundShareError):
    """
    Raised when a friend-graph mutation fails partway through.

    Surfaced to the user as a non-fatal notice. Never retried automatically:
    the completed steps are reported so the caller (or repair_friendship)
    can reason about the partial state.

    Attributes:
        operation: Name of the multi-step operation (e.g. 'approve_friend_request').
        failed_step: Name of the step that raised.
        completed_steps: Names of the steps that finished before the failure.

    Example:
        raise GraphWriteFailed(
            "Could not finish approving friend request",
            operation="approve_friend_request",
            failed_step="delete_request",
            completed_steps=["write_own_edge", "write_peer_edge"]
        )
    """

    def __init__(
        self,
        message: str,
        operation: str,
        failed_step: str,
        completed_steps: list[str] | None = None,
        details: dict | None = None
    ) -> None:
        completed = list(completed_steps or [])
        merged = {
            "operation": operation,
            "failed_step": failed_step,
            "completed_steps": completed,
        }
        merged.update(details or {})
        super().__init__(message, merged)
        self.operation = operation
        self.failed_step = failed_step
        self.completed_steps = completed


class ReviewError(SoundShareError):
    """Base class for review store failures."""
    pass


class InvalidReview(ReviewError):
    """
    Raised when a review fails validation before anything is written.

    Common causes:
        - Rating outside 1..5 or not an integer
        - Empty item id
        - The author already reviewed this item
    """
    pass


class ReviewWriteFailed(ReviewError):
    """Raised when the datastore fails while saving or deleting a review."""
    pass
