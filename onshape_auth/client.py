"""Onshape API client: signed request execution.

HTTP transport only. Endpoint helpers are standalone coroutines that accept
a client, the same way every endpoint wrapper in a larger code base would.
"""
import asyncio
import json as jsonlib
import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional
from urllib.parse import urlsplit

import aiohttp
from yarl import URL

from .config import API_BASE
from .errors import ApiError, AuthenticationError, TransportError
from .providers import AuthProvider
from .signing import Body, encode_query, normalize_path


DEFAULT_HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
}

DEFAULT_TIMEOUT = 60.0


class RawResponse(NamedTuple):
    status: int
    headers: Mapping[str, str]
    body: bytes


def _vendor_message(raw: RawResponse) -> str:
    text = raw.body.decode('utf-8', errors='replace')
    try:
        payload = jsonlib.loads(text)
    except ValueError:
        return text[:500] or f"HTTP {raw.status}"
    if isinstance(payload, dict) and payload.get('message'):
        return str(payload['message'])
    return text[:500]


def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    value = headers.get('Authorization', '')
    return value[len('Bearer '):] if value.startswith('Bearer ') else None


class OnshapeClient:
    """Sends requests signed by one auth provider, chosen at construction.

    Per request: build headers -> send -> on an OAuth 401 with refresh
    capability, refresh once and resend once -> succeed or fail. API-key
    401s are never retried.

    The aiohttp session and the logger can be injected; otherwise the client
    owns a session for its lifetime (use `async with` or `close()`).
    """

    def __init__(
        self,
        auth: AuthProvider,
        base_url: str = API_BASE,
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.auth = auth
        self.base_url = base_url.rstrip('/')
        self.log = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        # Path prefix of the base URL, e.g. /api/v12; part of what gets signed
        self._base_path = urlsplit(self.base_url).path.rstrip('/')

    async def __aenter__(self) -> 'OnshapeClient':
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def signed_path(self, endpoint: str) -> str:
        """Absolute request path as the server sees it (and verifies it)."""
        return self._base_path + normalize_path(endpoint)

    def url_for(self, path: str, params: Optional[Mapping[str, Any]] = None) -> URL:
        origin = URL(self.base_url).origin()
        query = encode_query(params)
        raw = f"{origin}{path}" + (f"?{query}" if query else "")
        # Already encoded: send exactly the query string that was signed
        return URL(raw, encoded=True)

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Body = None,
        headers: Optional[Mapping[str, str]] = None
    ) -> Any:
        """Make an authenticated API request.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            endpoint: Path relative to the base URL (e.g. "/documents")
            params: Query parameters; None values are dropped
            json: Object to send as a JSON body
            data: Pre-serialized body (str or bytes), used when json is None
            headers: Extra headers; override the JSON defaults

        Returns:
            Parsed JSON (dict/list), raw bytes for other content, or None
            for an empty body.

        Raises:
            AuthenticationError: 401/403, including after the single OAuth retry
            ApiError: any other non-2xx response
            TransportError: network failure or timeout
        """
        method = method.upper()
        path = self.signed_path(endpoint)
        body = jsonlib.dumps(json) if json is not None else data

        auth_headers = await self.auth.get_auth_headers(method, path, params, body)
        raw = await self._send(method, path, params, body, auth_headers, headers)

        if raw.status == 401 and self.auth.has_refresh_capability():
            self.log.info(f"401 on {method} {path}; refreshing OAuth token and retrying once")
            await self.auth.refresh(stale_token=_bearer_token(auth_headers))
            auth_headers = await self.auth.get_auth_headers(method, path, params, body)
            raw = await self._send(method, path, params, body, auth_headers, headers)
            if raw.status == 401:
                raise AuthenticationError(
                    "Request still unauthorized after token refresh",
                    status_code=401,
                    hints=self.auth.diagnose(),
                )

        return self._handle(method, path, raw)

    async def get(self, endpoint: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request('GET', endpoint, params=params, **kwargs)

    async def post(self, endpoint: str, json: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request('POST', endpoint, params=params, json=json, **kwargs)

    async def put(self, endpoint: str, json: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request('PUT', endpoint, params=params, json=json, **kwargs)

    async def patch(self, endpoint: str, json: Any = None, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request('PATCH', endpoint, params=params, json=json, **kwargs)

    async def delete(self, endpoint: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request('DELETE', endpoint, params=params, **kwargs)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        body: Body,
        auth_headers: Mapping[str, str],
        extra_headers: Optional[Mapping[str, str]]
    ) -> RawResponse:
        merged: Dict[str, str] = {**DEFAULT_HEADERS, **auth_headers, **(extra_headers or {})}
        url = self.url_for(path, params)
        self.log.debug(f"API Request: {method} {url}")
        try:
            async with self.session.request(method, url, headers=merged, data=body) as response:
                payload = await response.read()
                return RawResponse(response.status, response.headers, payload)
        except aiohttp.ClientError as e:
            self.log.error(f"API request failed: {method} {path}: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            self.log.error(f"API request timed out: {method} {path}")
            raise TransportError(f"{method} {path} timed out") from e

    def _handle(self, method: str, path: str, raw: RawResponse) -> Any:
        if raw.status >= 400:
            message = _vendor_message(raw)
            self.log.error(f"Error {raw.status} on {method} {path}: {message}")
            if raw.status in (401, 403):
                raise AuthenticationError(message, status_code=raw.status, hints=self.auth.diagnose())
            raise ApiError(message, status_code=raw.status)

        if not raw.body:
            return None
        content_type = raw.headers.get('Content-Type', '')
        if 'json' in content_type:
            try:
                return jsonlib.loads(raw.body.decode('utf-8'))
            except ValueError as e:
                self.log.error(f"Invalid JSON in {raw.status} response to {method} {path}")
                raise ApiError("Response body is not valid JSON", status_code=raw.status) from e
        return raw.body


# --- Endpoint Helpers ---

async def get_session_info(client: OnshapeClient) -> Dict[str, Any]:
    """Current user's session; the cheapest call that proves credentials work."""
    return await client.get('/users/sessioninfo')


async def list_documents(client: OnshapeClient, limit: int = 20) -> List[Dict[str, Any]]:
    """List recently modified documents.

    Returns list of documents with id, name, modifiedAt, etc.
    """
    response = await client.get('/documents', params={
        'sortColumn': 'modifiedAt',
        'sortOrder': 'desc',
        'limit': limit
    })
    return response.get('items', []) if isinstance(response, dict) else response
