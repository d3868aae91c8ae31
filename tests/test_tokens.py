"""Test the token lifecycle manager"""

import base64
import threading
import time
from unittest.mock import Mock

import pytest
import requests

from sound_share.auth.callback import AuthorizationResponse
from sound_share.auth.credentials import (
    ACCESS_TOKEN_KEY,
    EXPIRATION_TIME_KEY,
    REFRESH_TOKEN_KEY,
    Credential,
    MemoryCredentialStore,
    load_credential,
    save_credential,
)
from sound_share.auth.tokens import TOKEN_URL, AuthState, TokenLifecycleManager
from sound_share.core.exceptions import (
    AuthCancelled,
    AuthExchangeFailed,
    CredentialStoreError,
    DatastoreError,
    NotAuthenticated,
    RefreshFailed,
    RefreshInvalid,
)


def token_response(status_code: int = 200, body=None) -> Mock:
    """Mock requests.Response for the token endpoint"""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    return response


GRANTED = {
    "access_token": "new-access",
    "refresh_token": "new-refresh",
    "expires_in": 3600,
    "token_type": "Bearer",
}


@pytest.fixture
def http():
    http = Mock()
    http.post.return_value = token_response(200, dict(GRANTED))
    return http


@pytest.fixture
def consent():
    session = Mock()
    session.run.return_value = AuthorizationResponse(code="auth-code")
    return session


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def manager(credential_store, consent, http, clock):
    return TokenLifecycleManager(
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://127.0.0.1:8888/callback",
        store=credential_store,
        session=consent,
        http=http,
        clock=clock,
    )


def store_credential(store, clock, access="old-access", refresh="old-refresh", expires_in_s=3600):
    save_credential(store, Credential(access, refresh, int((clock() + expires_in_s) * 1000)))


class TestAuthenticate:
    """Test the interactive login"""

    def test_stores_all_three_fields(self, manager, credential_store, http, clock):
        """A successful exchange persists access, refresh and expiry"""
        credential = manager.authenticate()

        assert credential.access_token == "new-access"
        assert credential_store.get(ACCESS_TOKEN_KEY) == "new-access"
        assert credential_store.get(REFRESH_TOKEN_KEY) == "new-refresh"
        assert credential_store.get(EXPIRATION_TIME_KEY) == str(int(clock() * 1000) + 3600 * 1000)
        assert manager.state is AuthState.LOGGED_IN

    def test_exchange_request(self, manager, http):
        """The code is exchanged with Basic auth and the same redirect URI"""
        manager.authenticate()

        args, kwargs = http.post.call_args
        assert args[0] == TOKEN_URL
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["code"] == "auth-code"
        assert kwargs["data"]["redirect_uri"] == "http://127.0.0.1:8888/callback"
        expected = "Basic " + base64.b64encode(b"cid:secret").decode()
        assert kwargs["headers"]["Authorization"] == expected

    def test_failed_exchange_stores_nothing(self, manager, credential_store, http):
        """An error body leaves all three keys absent"""
        http.post.return_value = token_response(400, {"error": "invalid_grant"})

        with pytest.raises(AuthExchangeFailed):
            manager.authenticate()

        assert credential_store.get(ACCESS_TOKEN_KEY) is None
        assert credential_store.get(REFRESH_TOKEN_KEY) is None
        assert credential_store.get(EXPIRATION_TIME_KEY) is None
        assert manager.state is AuthState.LOGGED_OUT

    def test_incomplete_response_stores_nothing(self, manager, credential_store, http):
        """A 200 without refresh_token is a failed exchange"""
        http.post.return_value = token_response(200, {"access_token": "a", "expires_in": 3600})

        with pytest.raises(AuthExchangeFailed):
            manager.authenticate()
        assert load_credential(credential_store) is None

    def test_network_error(self, manager, http):
        """Transport failures fail the exchange"""
        http.post.side_effect = requests.ConnectionError("down")

        with pytest.raises(AuthExchangeFailed):
            manager.authenticate()

    def test_cancel_keeps_existing_login(self, manager, credential_store, consent, clock):
        """Cancelling a re-login doesn't log the user out"""
        store_credential(credential_store, clock)
        consent.run.side_effect = AuthCancelled("cancelled")

        with pytest.raises(AuthCancelled):
            manager.authenticate()

        assert load_credential(credential_store).access_token == "old-access"
        assert manager.state is AuthState.LOGGED_IN

    def test_state_mismatch(self, manager, consent, http):
        """A callback carrying someone else's state is rejected"""
        consent.run.return_value = AuthorizationResponse(code="auth-code", state="forged")

        with pytest.raises(AuthExchangeFailed, match="state"):
            manager.authenticate()
        http.post.assert_not_called()

    def test_post_authentication_hook(self, manager):
        """Hooks run with the new credential"""
        hook = Mock()
        manager.add_post_authentication_hook(hook)

        credential = manager.authenticate()

        hook.assert_called_once_with(credential)

    def test_failing_hook_does_not_undo_login(self, manager, credential_store):
        """A hook error is reported, the login stands"""
        manager.add_post_authentication_hook(Mock(side_effect=DatastoreError("offline")))

        manager.authenticate()

        assert load_credential(credential_store) is not None
        assert manager.state is AuthState.LOGGED_IN


class TestGetValidAccessToken:
    """Test token retrieval and automatic refresh"""

    def test_no_credential(self, manager):
        """Logged out returns None"""
        assert manager.get_valid_access_token() is None
        assert manager.state is AuthState.LOGGED_OUT

    def test_valid_token_no_network(self, manager, credential_store, http, clock):
        """A fresh token is returned without calling the token endpoint"""
        store_credential(credential_store, clock)

        assert manager.get_valid_access_token() == "old-access"
        http.post.assert_not_called()

    def test_expired_token_is_refreshed(self, manager, credential_store, http, clock):
        """An expired token triggers exactly one refresh"""
        store_credential(credential_store, clock)
        clock.advance(3601)

        assert manager.get_valid_access_token() == "new-access"

        http.post.assert_called_once()
        data = http.post.call_args.kwargs["data"]
        assert data["grant_type"] == "refresh_token"
        assert data["refresh_token"] == "old-refresh"
        assert manager.state is AuthState.LOGGED_IN

    def test_missing_expiry_triggers_refresh(self, manager, credential_store, http):
        """An access token stored without expiry counts as expired"""
        credential_store.set(ACCESS_TOKEN_KEY, "old-access")
        credential_store.set(REFRESH_TOKEN_KEY, "old-refresh")

        assert manager.get_valid_access_token() == "new-access"
        http.post.assert_called_once()

    def test_concurrent_callers_refresh_once(self, manager, credential_store, http, clock):
        """Several threads hitting an expired token share one refresh"""
        store_credential(credential_store, clock)
        clock.advance(3601)

        def slow_post(*args, **kwargs):
            time.sleep(0.05)
            return token_response(200, dict(GRANTED))
        http.post.side_effect = slow_post

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(manager.get_valid_access_token()))
            for _ in range(5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["new-access"] * 5
        assert http.post.call_count == 1


class TestRefresh:
    """Test refresh() failure handling"""

    def test_keeps_refresh_token_when_not_rotated(self, manager, credential_store, http, clock):
        """A response without refresh_token keeps the old one"""
        store_credential(credential_store, clock)
        http.post.return_value = token_response(200, {"access_token": "new-access", "expires_in": 3600})

        manager.refresh()

        assert credential_store.get(REFRESH_TOKEN_KEY) == "old-refresh"
        assert credential_store.get(ACCESS_TOKEN_KEY) == "new-access"

    def test_rotated_refresh_token_is_stored(self, manager, credential_store, clock):
        """A new refresh token replaces the old one"""
        store_credential(credential_store, clock)

        manager.refresh()

        assert credential_store.get(REFRESH_TOKEN_KEY) == "new-refresh"

    def test_invalid_grant_wipes_credential(self, manager, credential_store, http, clock):
        """A rejected refresh token logs the user out"""
        store_credential(credential_store, clock)
        http.post.return_value = token_response(
            400, {"error": "invalid_grant", "error_description": "Refresh token revoked"}
        )

        with pytest.raises(RefreshInvalid):
            manager.refresh()

        assert credential_store.get(ACCESS_TOKEN_KEY) is None
        assert credential_store.get(REFRESH_TOKEN_KEY) is None
        assert credential_store.get(EXPIRATION_TIME_KEY) is None
        assert manager.state is AuthState.LOGGED_OUT

    def test_server_error_keeps_credential(self, manager, credential_store, http, clock):
        """A transient failure keeps the stored credential"""
        store_credential(credential_store, clock)
        http.post.return_value = token_response(503, {"error": "server_error"})

        with pytest.raises(RefreshFailed) as exc_info:
            manager.refresh()

        assert not isinstance(exc_info.value, RefreshInvalid)
        assert load_credential(credential_store).access_token == "old-access"
        assert manager.state is AuthState.EXPIRED

    def test_network_error_keeps_credential(self, manager, credential_store, http, clock):
        """A timeout keeps the stored credential"""
        store_credential(credential_store, clock)
        http.post.side_effect = requests.Timeout("slow")

        with pytest.raises(RefreshFailed):
            manager.refresh()
        assert load_credential(credential_store) is not None

    def test_no_refresh_token(self, manager, credential_store):
        """An access token alone can't be refreshed and is removed"""
        credential_store.set(ACCESS_TOKEN_KEY, "orphan")

        with pytest.raises(RefreshInvalid):
            manager.refresh()
        assert credential_store.get(ACCESS_TOKEN_KEY) is None

    def test_not_logged_in(self, manager):
        """Refreshing without a credential"""
        with pytest.raises(NotAuthenticated):
            manager.refresh()

    def test_store_failure_propagates(self, manager, http, clock):
        """A store that cannot persist the new tokens is reported"""
        store = Mock()
        store.get.side_effect = lambda key: {
            ACCESS_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r", EXPIRATION_TIME_KEY: "1"
        }[key]
        store.set.side_effect = CredentialStoreError("disk full")
        manager.store = store

        with pytest.raises(CredentialStoreError):
            manager.refresh()


class TestLogOut:
    """Test log_out()"""

    def test_clears_everything(self, manager, credential_store, clock):
        store_credential(credential_store, clock)

        manager.log_out()
        manager.log_out()

        assert load_credential(credential_store) is None
        assert manager.state is AuthState.LOGGED_OUT
        assert not manager.is_logged_in()
