"""
Shared fixtures for the Jellyfin client and script tests.
"""
from unittest.mock import MagicMock

import pytest
import requests

from common import Client


CONFIG = """
[jellyfin]
url = "http://jellyfin.local:8096/"
api_key = "secret"
user_id = "u1"
page_size = 2

[tags]
library = "Shows"
action = "add"
tag = "kids"
"""


class DummyResponse:
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json_data = json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            error = requests.HTTPError(f"{self.status_code} error")
            error.response = self
            raise error

    def json(self):
        return self._json_data if self._json_data is not None else {}


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    return path


@pytest.fixture
def client(config_file):
    """Logged-in client whose HTTP session is a mock."""
    c = Client(config_file)
    c.login()
    c.session = MagicMock()
    return c


@pytest.fixture
def fake_client():
    """Stand-in for Client at the item/policy level."""
    return MagicMock(spec=Client)


@pytest.fixture
def session(monkeypatch):
    """Mock session handed to every Client built during the test."""
    mock_session = MagicMock()
    monkeypatch.setattr("common.requests.Session", lambda: mock_session)
    return mock_session


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run from an empty directory; tests write their own config.toml."""
    monkeypatch.chdir(tmp_path)
    return tmp_path
