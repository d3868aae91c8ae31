"""
Interactive authorization session for the OAuth2 authorization code flow.

The user has to approve access in a browser. Two ways of getting the
authorization code back are supported, picked from the redirect URI:

- localhost/127.0.0.1 redirect: a small HTTP server listens on the redirect
  URI's port, the browser is opened on the authorization URL, and the
  callback handler captures ?code= (or ?error=) from the redirect.
- any other redirect (tunnel, custom domain): the authorization URL is
  printed and the user pastes either the full redirect URL or just the code.

There is no timeout. The only ways out are completing the consent, denying
it in the browser (error=access_denied), or pressing Ctrl-C; the last two
raise AuthCancelled.
"""

import threading
import urllib.parse
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Protocol

from sound_share.core.exceptions import AuthCancelled, AuthExchangeFailed
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


AUTHORIZE_URL = "https://accounts.spotify.com/authorize"

# Fixed scope set requested on every login
SCOPES = (
    "playlist-read-private",
    "user-read-email",
    "user-read-private",
    "user-top-read",
    "user-library-read",
    "user-read-recently-played",
)

# OAuth error code sent when the user clicks "Cancel" on the consent screen
ACCESS_DENIED = "access_denied"


@dataclass(frozen=True)
class AuthorizationResponse:
    """
    What came back from the consent step.

    Attributes:
        code: Authorization code to exchange.
        state: State echoed by the authorization server, or None when the
               user pasted a bare code.
    """
    code: str
    state: str | None = None


class AuthorizationSession(Protocol):
    """Runs the interactive consent step and returns the authorization code."""

    def run(self, authorization_url: str, redirect_uri: str) -> AuthorizationResponse: ...


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    state: str,
    show_dialog: bool = True,
    scopes: tuple[str, ...] = SCOPES
) -> str:
    """Build the authorize URL with the fixed, space-joined scope list."""
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "show_dialog": "true" if show_dialog else "false",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urllib.parse.urlencode(params)}"


def parse_redirect(query: str, require_state: bool = True) -> AuthorizationResponse:
    """
    Interpret the query string of a redirect back from the consent screen.

    Args:
        query: Raw query string of the redirect.
        require_state: Reject a redirect that carries no state. Only a
                       bare pasted code may come without one.

    Raises:
        AuthCancelled: If the user denied access.
        AuthExchangeFailed: For any other OAuth error, a missing code or
                            a missing state.
    """
    params = urllib.parse.parse_qs(query)

    if "error" in params:
        error = params["error"][0]
        if error == ACCESS_DENIED:
            raise AuthCancelled(
                "Authorization was cancelled in the browser",
                details={"error": error}
            )
        raise AuthExchangeFailed(
            f"Authorization failed: {error}",
            details={"error": error}
        )

    if "code" not in params or not params["code"][0]:
        raise AuthExchangeFailed(
            "No authorization code in redirect",
            details={"query": query}
        )

    state = params["state"][0] if params.get("state") else None
    if require_state and state is None:
        raise AuthExchangeFailed(
            "Authorization redirect carries no state",
            details={"reason": "state_missing"}
        )
    return AuthorizationResponse(code=params["code"][0], state=state)


class CallbackHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the OAuth2 redirect.

    Stores the raw query of the first request hitting the callback path on
    the server (server.callback_query) and sets server.callback_received.
    Requests for other paths (favicon, etc.) get a 404 and are ignored.
    """

    def do_GET(self):
        parsed_url = urllib.parse.urlparse(self.path)

        if parsed_url.path != self.server.callback_path:
            self.send_response(404)
            self.end_headers()
            return

        params = urllib.parse.parse_qs(parsed_url.query)
        succeeded = "code" in params

        self.send_response(200 if succeeded else 400)
        self.send_header("Content-type", "text/html")
        self.end_headers()

        if succeeded:
            body = """
            <html>
            <head><title>Sound Share</title></head>
            <body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
                <h1 style="color: #1DB954;">You're logged in!</h1>
                <p>You can close this window and return to the terminal.</p>
            </body>
            </html>
            """
        else:
            body = """
            <html>
            <head><title>Sound Share</title></head>
            <body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
                <h1 style="color: #E22134;">Login not completed</h1>
                <p>You can close this window and return to the terminal.</p>
            </body>
            </html>
            """
        self.wfile.write(body.encode())

        self.server.callback_query = parsed_url.query
        self.server.callback_received.set()

    def log_message(self, format, *args):
        # Keep the console clean during the OAuth flow
        pass


class LocalCallbackSession:
    """
    Browser + localhost callback server.

    The server binds to exactly the host/port of the redirect URI, since
    that URI has to match the one registered for the application.
    """

    def __init__(self, open_browser: Callable[[str], bool] = webbrowser.open) -> None:
        self._open_browser = open_browser

    def run(self, authorization_url: str, redirect_uri: str) -> AuthorizationResponse:
        parsed = urllib.parse.urlparse(redirect_uri)
        host = parsed.hostname or "127.0.0.1"
        port = parsed.port or 80

        try:
            server = HTTPServer((host, port), CallbackHandler)
        except OSError as e:
            raise AuthExchangeFailed(
                f"Cannot listen for the authorization callback on {host}:{port}: {e}",
                details={"redirect_uri": redirect_uri, "original_error": str(e)}
            ) from e

        server.callback_path = parsed.path or "/"
        server.callback_query = None
        server.callback_received = threading.Event()

        server_thread = threading.Thread(target=server.serve_forever, daemon=True)
        server_thread.start()

        try:
            logger.info("Opening browser for Spotify authorization...")
            logger.info(f"If the browser doesn't open, visit: {authorization_url}")
            self._open_browser(authorization_url)

            # Short waits keep Ctrl-C responsive
            while not server.callback_received.wait(0.5):
                pass
        except KeyboardInterrupt:
            raise AuthCancelled("Authorization cancelled by user")
        finally:
            server.shutdown()
            server.server_close()

        return parse_redirect(server.callback_query or "", require_state=True)


class ManualCodeSession:
    """
    Print the URL and let the user paste the redirect URL or the bare code.

    An empty answer, Ctrl-C or end-of-input count as a cancel.
    """

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        open_browser: Callable[[str], bool] = webbrowser.open
    ) -> None:
        self._input = input_func
        self._open_browser = open_browser

    def run(self, authorization_url: str, redirect_uri: str) -> AuthorizationResponse:
        logger.info(f"Visit this URL to authorize Sound Share: {authorization_url}")
        self._open_browser(authorization_url)

        try:
            answer = self._input("Paste the redirect URL (or just the code): ").strip()
        except (KeyboardInterrupt, EOFError):
            raise AuthCancelled("Authorization cancelled by user")

        if not answer:
            raise AuthCancelled("No authorization code provided")

        if "?" in answer or answer.startswith(("code=", "error=")):
            query = urllib.parse.urlparse(answer).query if "?" in answer else answer
            return parse_redirect(query)

        return AuthorizationResponse(code=answer)


def session_for_redirect(redirect_uri: str) -> AuthorizationSession:
    """Pick the callback server for local redirects, manual entry otherwise."""
    host = urllib.parse.urlparse(redirect_uri).hostname or ""
    if host in ("localhost", "127.0.0.1"):
        return LocalCallbackSession()
    return ManualCodeSession()
