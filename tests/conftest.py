# Test configuration and shared fixtures
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from onshape_auth.oauth import OAuthAuthProvider, OAuthTokenStore
from onshape_auth.providers import ApiKeyAuthProvider


# Mon, 01 Jan 2018 00:00:00 GMT
FIXED_TIME = 1514764800.0
FIXED_DATE = "Mon, 01 Jan 2018 00:00:00 GMT"

ACCESS_KEY = "AbCdEfGhIjKlMnOpQrStUvWx"
SECRET_KEY = "S3cr3tK3yForT3st1ngPurp0s3sOnly0123456789abcdef"
FIXED_NONCE = "bm9uY2Vub25jZW5vbmNlMTI="


class FakeResponse:
    """Stands in for aiohttp's ClientResponse inside `async with`."""

    def __init__(self, status=200, body=b"", headers=None):
        self.status = status
        self.headers = headers or {}
        self._body = body

    @classmethod
    def json(cls, payload, status=200):
        return cls(status, json.dumps(payload).encode(), {'Content-Type': 'application/json; charset=utf-8'})

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Records every request and answers through `responder(call) -> FakeResponse`."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, data=None):
        call = {'method': method, 'url': str(url), 'headers': dict(headers or {}), 'data': data}
        self.calls.append(call)
        return self.responder(call)

    async def close(self):
        self.closed = True


@pytest.fixture
def api_key_provider():
    """API-key provider with a frozen clock and nonce."""
    return ApiKeyAuthProvider(
        ACCESS_KEY, SECRET_KEY,
        clock=lambda: FIXED_TIME,
        nonce_factory=lambda: FIXED_NONCE,
    )


@pytest.fixture
def token_exchange():
    """Mocked token endpoint returning a fresh pair."""
    return AsyncMock(return_value={
        'access_token': 'new-access-token',
        'refresh_token': 'new-refresh-token',
        'expires_in': 3600,
    })


@pytest.fixture
def oauth_store():
    return OAuthTokenStore(
        access_token='old-access-token',
        refresh_token='old-refresh-token',
        client_id='client-id',
        client_secret='client-secret',
    )


@pytest.fixture
def oauth_provider(oauth_store, token_exchange):
    return OAuthAuthProvider(oauth_store, exchange=token_exchange)


@pytest.fixture
def mock_client():
    """Create a mock OnshapeClient."""
    client = Mock()
    client.get = AsyncMock()
    return client
