import pytest

import lodgify_client
from settings import Settings
from tests.fakes import FakeLodgifyAPI, FakeSession


@pytest.fixture
def settings() -> Settings:
    return Settings(lodgify_api_key="test-key", lodgify_base="https://api.lodgify.test", page_size=2)


@pytest.fixture
def install_api(monkeypatch):
    """Route every LodgifyClient created without an explicit session to a FakeLodgifyAPI."""

    def install(api: FakeLodgifyAPI) -> FakeLodgifyAPI:
        monkeypatch.setattr(lodgify_client, "_make_session", lambda pool_size: FakeSession(api))
        return api

    return install
