"""
OAuth2 token lifecycle management for the Spotify Web API.

TokenLifecycleManager owns the credential: it runs the authorization code
flow, persists the resulting tokens in the secure credential store,
refreshes them on demand and deletes them on logout. Every catalog call
obtains its bearer token from get_valid_access_token() right before the
request.

State machine (AuthState):

    LOGGED_OUT -> AUTHENTICATING -> LOGGED_IN -> EXPIRED -> REFRESHING -> LOGGED_IN
    AUTHENTICATING | REFRESHING -> LOGGED_OUT   on unrecoverable errors

Expiry is checked lazily at the point of use. There is no background
timer: the process may be suspended for hours and a timer would fire late
anyway, while a check right before each call can't be outrun.

Token endpoint contract:
    POST https://accounts.spotify.com/api/token
    Authorization: Basic base64(client_id:client_secret)
    grant_type=authorization_code&code=...&redirect_uri=...&client_id=...
    grant_type=refresh_token&refresh_token=...&client_id=...

    -> {access_token, refresh_token?, expires_in} or {error, error_description}
"""

import base64
import secrets
import threading
import time
from enum import Enum
from typing import Any, Callable

import requests

from sound_share.auth.callback import (
    AuthorizationSession,
    build_authorization_url,
    session_for_redirect,
)
from sound_share.auth.credentials import (
    Credential,
    SecureCredentialStore,
    clear_credential,
    load_credential,
    save_credential,
)
from sound_share.core.exceptions import (
    AuthCancelled,
    AuthError,
    AuthExchangeFailed,
    CredentialStoreError,
    NotAuthenticated,
    RefreshFailed,
    RefreshInvalid,
    SoundShareError,
)
from sound_share.core.logger import get_logger, log_user_notice


logger = get_logger(__name__)


TOKEN_URL = "https://accounts.spotify.com/api/token"

# OAuth error code for a revoked, expired or unknown refresh token
INVALID_GRANT = "invalid_grant"


class AuthState(Enum):
    """Login state of the token lifecycle manager."""
    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    LOGGED_IN = "logged_in"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


class TokenEndpointError(Exception):
    """
    Internal error raised by the token endpoint helper.

    Translated into AuthExchangeFailed / RefreshFailed / RefreshInvalid by
    the public operations; never escapes this module.
    """

    def __init__(self, http_status: int, error: str | None, description: str) -> None:
        super().__init__(description)
        self.http_status = http_status
        self.error = error
        self.description = description

    def as_details(self) -> dict[str, Any]:
        return {
            "http_status": self.http_status,
            "error": self.error,
            "error_description": self.description,
        }


PostAuthenticationHook = Callable[[Credential], None]


class TokenLifecycleManager:
    """
    Produces a currently-valid bearer token and keeps the credential durable.

    Attributes:
        client_id: Spotify application client ID.
        redirect_uri: Redirect URI registered for the application.
        store: Secure credential store holding the three credential keys.

    Thread Safety:
        refresh() and get_valid_access_token() share a re-entrant lock, so
        several threads hitting an expired token trigger a single refresh;
        the others wait and then read the refreshed credential.

    Example:
        manager = TokenLifecycleManager(
            client_id=config.spotify.client_id,
            client_secret=config.spotify.client_secret,
            redirect_uri=config.spotify.redirect_uri,
            store=KeyringCredentialStore(),
        )
        manager.authenticate()
        token = manager.get_valid_access_token()
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        store: SecureCredentialStore,
        session: AuthorizationSession | None = None,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        show_dialog: bool = True,
        request_timeout: float = 10.0,
        expiry_margin_ms: int = 0,
    ) -> None:
        """
        Args:
            client_id: Spotify application client ID.
            client_secret: Spotify application client secret (Basic auth only).
            redirect_uri: Exact redirect URI used for authorize and exchange.
            store: Where the credential is persisted.
            session: Interactive consent step. Defaults to the callback
                     server or manual entry depending on redirect_uri.
            http: requests session used for the token endpoint.
            clock: Returns the current time in epoch seconds.
            show_dialog: Force the consent screen on every login.
            request_timeout: Seconds before a token endpoint call gives up.
            expiry_margin_ms: Treat tokens as expired this much earlier.
        """
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.store = store
        self._session = session or session_for_redirect(redirect_uri)
        self._http = http or requests.Session()
        self._clock = clock
        self._show_dialog = show_dialog
        self._timeout = request_timeout
        self._margin_ms = expiry_margin_ms

        self._lock = threading.RLock()
        self._state: AuthState | None = None
        self._hooks: list[PostAuthenticationHook] = []

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> AuthState:
        """Current state, derived from the store on first access."""
        if self._state is None:
            self._state = self._derive_state()
        return self._state

    def _set_state(self, new_state: AuthState) -> None:
        if self._state != new_state:
            logger.debug(f"Auth state: {self._state.value if self._state else None} -> {new_state.value}")
        self._state = new_state

    def _derive_state(self) -> AuthState:
        credential = load_credential(self.store)
        if credential is None:
            return AuthState.LOGGED_OUT
        if credential.is_expired(self._now_ms(), self._margin_ms):
            return AuthState.EXPIRED
        return AuthState.LOGGED_IN

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def is_logged_in(self) -> bool:
        """True when a credential is stored (it may still need a refresh)."""
        return load_credential(self.store) is not None

    def stored_credential(self) -> Credential | None:
        """The stored credential set, or None."""
        return load_credential(self.store)

    def add_post_authentication_hook(self, hook: PostAuthenticationHook) -> None:
        """
        Register a callable run after every successful authenticate().

        Hooks receive the fresh credential. A hook raising SoundShareError
        is logged and reported as a user notice; the login stands.
        """
        self._hooks.append(hook)

    # =========================================================================
    # Operations
    # =========================================================================

    def authenticate(self) -> Credential:
        """
        Run the interactive authorization code flow and persist the tokens.

        Returns:
            The stored credential.

        Raises:
            AuthCancelled: The user dismissed the consent step.
            AuthExchangeFailed: The code could not be exchanged, the
                                response was incomplete or state mismatched.
            CredentialStoreError: Persisting failed (nothing is left stored).

        Behavior:
            1. Build the authorize URL with a random state
            2. Run the authorization session (browser or manual entry)
            3. Exchange the code at the token endpoint (Basic auth)
            4. Persist all three fields at once
            5. Run post-authentication hooks (e.g. create user record)
        """
        expected_state = secrets.token_urlsafe(16)
        authorization_url = build_authorization_url(
            self.client_id, self.redirect_uri, expected_state, self._show_dialog
        )

        self._set_state(AuthState.AUTHENTICATING)
        try:
            response = self._session.run(authorization_url, self.redirect_uri)

            if response.state is not None and response.state != expected_state:
                raise AuthExchangeFailed(
                    "Authorization response state mismatch",
                    details={"reason": "state_mismatch"}
                )

            try:
                payload = self._post_token({
                    "grant_type": "authorization_code",
                    "code": response.code,
                    "redirect_uri": self.redirect_uri,
                    "client_id": self.client_id,
                })
            except TokenEndpointError as e:
                raise AuthExchangeFailed(
                    f"Failed to exchange authorization code: {e.description}",
                    details=e.as_details()
                ) from e

            credential = self._credential_from_payload(payload, previous_refresh_token=None)
            if credential is None:
                raise AuthExchangeFailed(
                    "Token response is missing access_token, refresh_token or expires_in",
                    details={"fields": sorted(payload)}
                )

            with self._lock:
                save_credential(self.store, credential)
        except (AuthError, CredentialStoreError) as e:
            self._set_state(self._derive_state())
            if isinstance(e, AuthCancelled):
                logger.info("Login cancelled")
            else:
                logger.error(f"Login failed: {e.message}")
            raise

        self._set_state(AuthState.LOGGED_IN)
        logger.info("Logged in to Spotify")

        for hook in self._hooks:
            try:
                hook(credential)
            except SoundShareError as e:
                log_user_notice(
                    logger,
                    "Logged in, but account setup did not finish",
                    e.message
                )

        return credential

    def refresh(self) -> str:
        """
        Exchange the stored refresh token for a new access token.

        Returns:
            The new access token.

        Raises:
            NotAuthenticated: No credential is stored.
            RefreshInvalid: The server rejected the refresh token
                            (invalid_grant) or none is stored. All three
                            credential fields are deleted first.
            RefreshFailed: Transient failure. The stored credential is kept.
            CredentialStoreError: Persisting the new tokens failed.
        """
        with self._lock:
            credential = load_credential(self.store)
            if credential is None:
                self._set_state(AuthState.LOGGED_OUT)
                raise NotAuthenticated("Not logged in. Run 'sound-share login' first.")

            if not credential.refresh_token:
                self._wipe_after_rejection()
                raise RefreshInvalid(
                    "No refresh token stored; please log in again",
                    details={"reason": "missing_refresh_token"}
                )

            self._set_state(AuthState.REFRESHING)
            logger.debug("Refreshing access token")

            try:
                payload = self._post_token({
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                    "client_id": self.client_id,
                })
            except TokenEndpointError as e:
                if e.error == INVALID_GRANT:
                    self._wipe_after_rejection()
                    raise RefreshInvalid(
                        "Spotify rejected the refresh token; please log in again",
                        details=e.as_details()
                    ) from e
                self._set_state(AuthState.EXPIRED)
                raise RefreshFailed(
                    f"Token refresh failed: {e.description}",
                    details=e.as_details()
                ) from e

            refreshed = self._credential_from_payload(
                payload, previous_refresh_token=credential.refresh_token
            )
            if refreshed is None:
                self._set_state(AuthState.EXPIRED)
                raise RefreshFailed(
                    "Token refresh response is missing access_token or expires_in",
                    details={"fields": sorted(payload)}
                )

            try:
                save_credential(self.store, refreshed)
            except CredentialStoreError:
                self._set_state(AuthState.LOGGED_OUT)
                raise

            if refreshed.refresh_token != credential.refresh_token:
                logger.debug("Refresh token was rotated")
            self._set_state(AuthState.LOGGED_IN)
            logger.debug("Access token refreshed")
            return refreshed.access_token

    def get_valid_access_token(self) -> str | None:
        """
        Return an access token that is not expired as of now.

        Returns:
            The access token, refreshed first if it was stale, or None when
            no credential is stored.

        Raises:
            RefreshInvalid / RefreshFailed / CredentialStoreError: From refresh().
        """
        with self._lock:
            credential = load_credential(self.store)
            if credential is None:
                self._set_state(AuthState.LOGGED_OUT)
                return None

            if credential.is_expired(self._now_ms(), self._margin_ms):
                self._set_state(AuthState.EXPIRED)
                logger.info("Access token expired, refreshing...")
                return self.refresh()

            self._set_state(AuthState.LOGGED_IN)
            return credential.access_token

    def log_out(self) -> None:
        """Delete every credential field. Idempotent."""
        with self._lock:
            try:
                clear_credential(self.store)
            finally:
                self._set_state(AuthState.LOGGED_OUT)
        logger.info("Logged out")

    # =========================================================================
    # Token endpoint
    # =========================================================================

    def _wipe_after_rejection(self) -> None:
        clear_credential(self.store, strict=False)
        self._set_state(AuthState.LOGGED_OUT)
        logger.warning("Stored Spotify credential is no longer valid and was removed")

    def _basic_auth_header(self) -> str:
        raw = f"{self.client_id}:{self._client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        """
        POST a grant to the token endpoint.

        Raises:
            TokenEndpointError: On transport failure, non-2xx status, an
                                error body, or a non-JSON body.
        """
        try:
            response = self._http.post(
                TOKEN_URL,
                data=data,
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise TokenEndpointError(0, None, f"Network error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise TokenEndpointError(
                response.status_code, None,
                f"Unexpected token endpoint response (HTTP {response.status_code})"
            )

        if response.status_code >= 400 or "error" in body:
            error = body.get("error")
            if isinstance(error, dict):
                # Some proxies wrap errors as {"error": {"status", "message"}}
                description = str(error.get("message", ""))
                error = None
            else:
                description = str(body.get("error_description") or error or "")
            raise TokenEndpointError(
                response.status_code, error,
                description or f"HTTP {response.status_code}"
            )

        return body

    def _credential_from_payload(
        self,
        payload: dict[str, Any],
        previous_refresh_token: str | None
    ) -> Credential | None:
        """
        Build a Credential from a token response, or None if it's incomplete.

        The refresh token is rotated only when the response supplies one.
        """
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        refresh_token = payload.get("refresh_token") or previous_refresh_token

        if not isinstance(access_token, str) or not access_token:
            return None
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            return None
        if not refresh_token:
            return None

        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at_ms=self._now_ms() + int(expires_in * 1000),
        )
