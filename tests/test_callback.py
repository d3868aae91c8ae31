"""Test the interactive authorization session helpers"""

import socket
import urllib.parse
from unittest.mock import Mock

import pytest
import requests

from sound_share.auth.callback import (
    AUTHORIZE_URL,
    SCOPES,
    LocalCallbackSession,
    ManualCodeSession,
    build_authorization_url,
    parse_redirect,
    session_for_redirect,
)
from sound_share.core.exceptions import AuthCancelled, AuthExchangeFailed


class TestAuthorizationUrl:
    """Test build_authorization_url()"""

    def test_contains_required_parameters(self):
        """client_id, redirect, code flow, scopes, state and show_dialog"""
        url = build_authorization_url("cid", "http://127.0.0.1:8888/callback", "xyz")
        parsed = urllib.parse.urlparse(url)
        params = urllib.parse.parse_qs(parsed.query)

        assert url.startswith(AUTHORIZE_URL)
        assert params["client_id"] == ["cid"]
        assert params["response_type"] == ["code"]
        assert params["redirect_uri"] == ["http://127.0.0.1:8888/callback"]
        assert params["scope"] == [" ".join(SCOPES)]
        assert params["state"] == ["xyz"]
        assert params["show_dialog"] == ["true"]


class TestParseRedirect:
    """Test parse_redirect()"""

    def test_code_and_state(self):
        """The code and state are extracted"""
        response = parse_redirect("code=abc&state=xyz")
        assert response.code == "abc"
        assert response.state == "xyz"

    def test_access_denied_is_cancel(self):
        """Pressing Cancel on the consent screen"""
        with pytest.raises(AuthCancelled):
            parse_redirect("error=access_denied&state=xyz")

    def test_other_error(self):
        """Any other OAuth error fails the exchange"""
        with pytest.raises(AuthExchangeFailed, match="invalid_scope"):
            parse_redirect("error=invalid_scope")

    def test_missing_code(self):
        """A redirect without a code is an error"""
        with pytest.raises(AuthExchangeFailed):
            parse_redirect("state=xyz")

    def test_missing_state(self):
        """A redirect that does not echo a state is rejected"""
        with pytest.raises(AuthExchangeFailed) as exc_info:
            parse_redirect("code=abc")
        assert exc_info.value.details["reason"] == "state_missing"

        assert parse_redirect("code=abc", require_state=False).state is None


class TestManualCodeSession:
    """Test manual code entry"""

    def test_bare_code(self):
        """A pasted code is used as-is, with no state"""
        session = ManualCodeSession(input_func=lambda prompt: "  abc  ", open_browser=Mock())
        response = session.run("https://auth", "https://example.com/cb")

        assert response.code == "abc"
        assert response.state is None

    def test_full_redirect_url(self):
        """A pasted redirect URL is parsed"""
        session = ManualCodeSession(
            input_func=lambda prompt: "https://example.com/cb?code=abc&state=s1",
            open_browser=Mock()
        )
        response = session.run("https://auth", "https://example.com/cb")

        assert response.code == "abc"
        assert response.state == "s1"

    def test_pasted_url_without_state(self):
        """Only a bare code may come without a state"""
        session = ManualCodeSession(
            input_func=lambda prompt: "https://example.com/cb?code=abc",
            open_browser=Mock()
        )
        with pytest.raises(AuthExchangeFailed):
            session.run("https://auth", "https://example.com/cb")

    def test_empty_answer_cancels(self):
        """Nothing pasted means cancel"""
        session = ManualCodeSession(input_func=lambda prompt: "", open_browser=Mock())
        with pytest.raises(AuthCancelled):
            session.run("https://auth", "https://example.com/cb")

    def test_ctrl_c_cancels(self):
        """Ctrl-C at the prompt means cancel"""
        session = ManualCodeSession(input_func=Mock(side_effect=KeyboardInterrupt), open_browser=Mock())
        with pytest.raises(AuthCancelled):
            session.run("https://auth", "https://example.com/cb")

    def test_opens_browser(self):
        """The authorization URL is opened"""
        browser = Mock()
        ManualCodeSession(input_func=lambda prompt: "abc", open_browser=browser).run(
            "https://auth", "https://example.com/cb"
        )
        browser.assert_called_once_with("https://auth")


class TestSessionForRedirect:
    """Test session selection"""

    def test_local_redirect_uses_server(self):
        assert isinstance(session_for_redirect("http://127.0.0.1:8888/callback"), LocalCallbackSession)
        assert isinstance(session_for_redirect("http://localhost:8888/callback"), LocalCallbackSession)

    def test_remote_redirect_uses_manual_entry(self):
        assert isinstance(session_for_redirect("https://example.com/callback"), ManualCodeSession)


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestLocalCallbackSession:
    """Test the loopback callback server"""

    def run_with_redirect(self, query: str):
        """Run a session whose browser immediately hits the callback with query"""
        redirect_uri = f"http://127.0.0.1:{free_port()}/callback"

        def browser(url):
            requests.get(f"{redirect_uri}?{query}", timeout=5)
            return True

        return LocalCallbackSession(open_browser=browser).run("https://auth", redirect_uri)

    def test_redirect_with_state(self):
        response = self.run_with_redirect("code=abc&state=s1")

        assert response.code == "abc"
        assert response.state == "s1"

    def test_redirect_without_state_is_rejected(self):
        """A callback request carrying only a code is never exchanged"""
        with pytest.raises(AuthExchangeFailed) as exc_info:
            self.run_with_redirect("code=forged")

        assert exc_info.value.details["reason"] == "state_missing"
