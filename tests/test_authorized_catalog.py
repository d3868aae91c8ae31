"""Test refresh-and-retry around catalog calls"""

from unittest.mock import Mock

import pytest

from sound_share.catalog.authorized import AuthorizedCatalog
from sound_share.core.exceptions import CatalogRequestFailed, NotAuthenticated, RefreshInvalid


def unauthorized():
    return CatalogRequestFailed("token rejected", http_status=401)


@pytest.fixture
def manager():
    manager = Mock()
    manager.get_valid_access_token.return_value = "token-1"
    manager.refresh.return_value = "token-2"
    return manager


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def catalog(manager, client):
    return AuthorizedCatalog(manager, client)


class TestAuthorizedCatalog:
    """Test AuthorizedCatalog"""

    def test_passes_current_token(self, catalog, client):
        """The token is fetched right before the call"""
        client.track.return_value = {"id": "t1"}

        assert catalog.track("t1") == {"id": "t1"}
        client.track.assert_called_once_with("token-1", "t1")

    def test_not_logged_in(self, catalog, manager, client):
        """No credential means NotAuthenticated, no request"""
        manager.get_valid_access_token.return_value = None

        with pytest.raises(NotAuthenticated):
            catalog.current_user_profile()
        client.current_user_profile.assert_not_called()

    def test_401_refreshes_once_and_retries(self, catalog, manager, client):
        """A rejected token is refreshed and the call retried once"""
        client.current_user_top_tracks.side_effect = [unauthorized(), {"items": []}]

        assert catalog.current_user_top_tracks(limit=5) == {"items": []}

        manager.refresh.assert_called_once()
        assert client.current_user_top_tracks.call_args_list[1].args == ("token-2",)
        assert client.current_user_top_tracks.call_args_list[1].kwargs == {"limit": 5}

    def test_second_401_propagates(self, catalog, manager, client):
        """The retry is not retried again"""
        client.album.side_effect = [unauthorized(), unauthorized()]

        with pytest.raises(CatalogRequestFailed):
            catalog.album("a1")
        manager.refresh.assert_called_once()
        assert client.album.call_count == 2

    def test_other_errors_do_not_refresh(self, catalog, manager, client):
        """Only 401 triggers a refresh"""
        client.artist.side_effect = CatalogRequestFailed("server error", http_status=500)

        with pytest.raises(CatalogRequestFailed):
            catalog.artist("ar1")
        manager.refresh.assert_not_called()

    def test_refresh_invalid_propagates(self, catalog, manager, client):
        """A revoked refresh token ends the retry"""
        client.track.side_effect = unauthorized()
        manager.refresh.side_effect = RefreshInvalid("revoked")

        with pytest.raises(RefreshInvalid):
            catalog.track("t1")
        assert client.track.call_count == 1

    def test_current_identity(self, catalog, client):
        """Identity comes from the profile"""
        client.current_user_profile.return_value = {"id": "u1", "display_name": "Ann"}

        identity = catalog.current_identity()

        assert identity.id == "u1"
        assert identity.display_name == "Ann"
