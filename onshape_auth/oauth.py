"""OAuth bearer-token support: token store, provider and token endpoint calls."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlencode

import aiohttp

from .errors import AuthenticationError, ConfigurationError, TransportError
from .secrets import mask_secret


OAUTH_URL = "https://oauth.onshape.com"
DEFAULT_SCOPES = ['OAuth2ReadPII', 'OAuth2Read', 'OAuth2Write', 'OAuth2Delete']

# Onshape's numeric scope bits
SCOPE_BITS = {
    1: 'OAuth2ReadPII',
    2: 'OAuth2Write',
    4: 'OAuth2Read',
    8: 'OAuth2Delete',
}

DEFAULT_EXPIRY_MARGIN = 60.0
DEFAULT_REFRESH_TIMEOUT = 30.0

TokenResponse = Dict[str, Any]
TokenExchange = Callable[[str, str, str], Awaitable[TokenResponse]]


# --- Token State ---

@dataclass(frozen=True)
class TokenState:
    """One access/refresh pair. Replaced as a whole, never edited in place."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None


class OAuthTokenStore:
    """Holds the current token pair plus the client credentials used to renew it."""

    def __init__(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        expires_at: Optional[float] = None,
        clock: Callable[[], float] = time.time
    ):
        self.client_id = client_id or None
        self.client_secret = client_secret or None
        # Without an access token the first request has to obtain one
        if not access_token and not (refresh_token and self.client_id and self.client_secret):
            raise ConfigurationError(
                "OAuth authentication requires an access token, or a refresh token with client id and secret"
            )
        self._state = TokenState(access_token or "", refresh_token or None, expires_at)
        self._clock = clock

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def expires_at(self) -> Optional[float]:
        return self._state.expires_at

    def get_access_token(self) -> str:
        """Empty until the first refresh when constructed from a refresh token only."""
        return self._state.access_token

    def get_refresh_token(self) -> Optional[str]:
        return self._state.refresh_token

    def replace(
        self,
        new_access_token: str,
        new_refresh_token: Optional[str],
        expires_at: Optional[float] = None
    ) -> None:
        """Swap in a new pair in one assignment. Keeps the old refresh token if none given."""
        if not new_access_token:
            raise AuthenticationError("Token exchange returned no access token")
        self._state = TokenState(
            access_token=new_access_token,
            refresh_token=new_refresh_token or self._state.refresh_token,
            expires_at=expires_at,
        )

    def has_refresh_capability(self) -> bool:
        return bool(self._state.refresh_token and self.client_id and self.client_secret)

    def is_expiring(self, margin: float = DEFAULT_EXPIRY_MARGIN) -> bool:
        """False when expiry is not tracked."""
        if self._state.expires_at is None:
            return False
        return self._clock() >= self._state.expires_at - margin

    def is_expired(self) -> bool:
        if self._state.expires_at is None:
            return False
        return self._clock() >= self._state.expires_at


# --- Token Endpoint ---

def authorization_url(
    client_id: str,
    redirect_uri: str,
    scope: Union[str, List[str], int, None] = None,
    state: Optional[str] = None,
    oauth_url: str = OAUTH_URL
) -> str:
    """URL to send a user to for the authorization_code grant."""
    params = {
        'response_type': 'code',
        'client_id': client_id,
        'redirect_uri': redirect_uri,
        'scope': format_oauth_scopes(scope)['formatted'],
    }
    if state:
        params['state'] = state
    return f"{oauth_url.rstrip('/')}/oauth/authorize?{urlencode(params)}"


def format_oauth_scopes(scopes: Union[str, List[str], int, None]) -> Dict[str, Any]:
    """Normalize scopes given as a string, a list or Onshape's bit mask.

    An empty value means the full default set.
    """
    if isinstance(scopes, bool):
        raise ConfigurationError(f"Invalid OAuth scope value: {scopes!r}")
    if isinstance(scopes, int):
        interpreted = [name for bit, name in SCOPE_BITS.items() if scopes & bit]
    elif isinstance(scopes, str):
        interpreted = [s for s in scopes.split(' ') if s]
    elif scopes:
        interpreted = list(scopes)
    else:
        interpreted = []

    if not interpreted:
        interpreted = list(DEFAULT_SCOPES)

    return {
        'formatted': ' '.join(interpreted),
        'scopes': interpreted,
        'has': {
            'read_pii': any('ReadPII' in s for s in interpreted),
            'read': any(s.endswith('Read') for s in interpreted),
            'write': any('Write' in s for s in interpreted),
            'delete': any('Delete' in s for s in interpreted),
        },
    }


async def post_token_request(
    form: Mapping[str, str],
    client_id: str,
    client_secret: str,
    oauth_url: str = OAUTH_URL,
    session: Optional[aiohttp.ClientSession] = None,
    timeout: float = DEFAULT_REFRESH_TIMEOUT
) -> TokenResponse:
    """POST a grant to the token endpoint with HTTP Basic client auth."""
    url = f"{oauth_url.rstrip('/')}/oauth/token"
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
    try:
        logging.debug(f"Token request: grant_type={form.get('grant_type')} client={mask_secret(client_id)}")
        async with session.post(
            url,
            data=dict(form),
            auth=aiohttp.BasicAuth(client_id, client_secret),
            headers={'Content-Type': 'application/x-www-form-urlencoded', 'Accept': 'application/json'},
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise AuthenticationError(
                    f"Token exchange failed: {text[:200]}",
                    status_code=response.status,
                )
            try:
                payload = await response.json(content_type=None)
            except ValueError as e:
                raise AuthenticationError(
                    "Token exchange returned invalid JSON",
                    status_code=response.status,
                ) from e
    except aiohttp.ClientError as e:
        raise TransportError(f"Token endpoint unreachable: {e}") from e
    finally:
        if owns_session:
            await session.close()

    if not isinstance(payload, dict) or not payload.get('access_token'):
        raise AuthenticationError("Token exchange response did not contain an access token")
    return payload


async def exchange_refresh_token(
    refresh_token: str,
    client_id: str,
    client_secret: str,
    oauth_url: str = OAUTH_URL,
    session: Optional[aiohttp.ClientSession] = None
) -> TokenResponse:
    return await post_token_request(
        {'grant_type': 'refresh_token', 'refresh_token': refresh_token},
        client_id, client_secret, oauth_url=oauth_url, session=session,
    )


async def exchange_code(
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    oauth_url: str = OAUTH_URL,
    session: Optional[aiohttp.ClientSession] = None
) -> TokenResponse:
    """authorization_code grant. Returns the raw token response."""
    return await post_token_request(
        {'grant_type': 'authorization_code', 'code': code, 'redirect_uri': redirect_uri},
        client_id, client_secret, oauth_url=oauth_url, session=session,
    )


def expires_at_from(response: TokenResponse, clock: Callable[[], float] = time.time) -> Optional[float]:
    expires_in = response.get('expires_in')
    if expires_in is None:
        return None
    try:
        return clock() + float(expires_in)
    except (TypeError, ValueError):
        logging.warning(f"Ignoring non-numeric expires_in: {expires_in!r}")
        return None


# --- Provider ---

class OAuthAuthProvider:
    """Bearer-token provider with de-duplicated refresh.

    Every refresh runs as one shared task. Callers await it through
    asyncio.shield, so a cancelled caller does not cancel the exchange for
    the others, and the task's own timeout guarantees the guard is released.
    """

    method = 'oauth'

    def __init__(
        self,
        store: OAuthTokenStore,
        exchange: Optional[TokenExchange] = None,
        oauth_url: str = OAUTH_URL,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT
    ):
        self.store = store
        self.oauth_url = oauth_url
        self.expiry_margin = expiry_margin
        self.refresh_timeout = refresh_timeout
        self._exchange = exchange or self._default_exchange
        self._pending: Optional[asyncio.Task] = None
        self.refresh_count = 0

    @classmethod
    def from_tokens(
        cls,
        access_token: str,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        expires_at: Optional[float] = None,
        **kwargs: Any
    ) -> 'OAuthAuthProvider':
        store = OAuthTokenStore(access_token, refresh_token, client_id, client_secret, expires_at)
        return cls(store, **kwargs)

    def get_method(self) -> str:
        return self.method

    def has_refresh_capability(self) -> bool:
        return self.store.has_refresh_capability()

    @property
    def refreshing(self) -> bool:
        return self._pending is not None

    async def get_auth_headers(
        self,
        method: str = 'GET',
        path: str = '/',
        query_params: Optional[Mapping[str, Any]] = None,
        body: Any = None
    ) -> Dict[str, str]:
        token = self.store.get_access_token()
        if not token:
            logging.info("No access token yet, obtaining one with the refresh token")
            await self.refresh(stale_token=token)
        elif self.store.is_expiring(self.expiry_margin) and self.has_refresh_capability():
            logging.info("Access token near expiry, refreshing before request")
            try:
                await self.refresh(stale_token=token)
            except AuthenticationError as e:
                if self.store.is_expired():
                    raise
                logging.warning(f"Early token refresh failed, using current token until expiry: {e}")
        return {
            'Authorization': f"Bearer {self.store.get_access_token()}",
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def diagnose(self) -> List[str]:
        hints = []
        if not self.store.get_refresh_token():
            hints.append("No refresh token configured; the access token cannot be renewed automatically.")
        elif not (self.store.client_id and self.store.client_secret):
            hints.append("Refresh token present but client id/secret missing; set ONSHAPE_CLIENT_ID and ONSHAPE_CLIENT_SECRET.")
        hints.append(f"Access token in use: {mask_secret(self.store.get_access_token())}")
        return hints

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """Exchange the refresh token for a new pair. Returns the new access token.

        With `stale_token`, a store that already moved past that token is
        treated as refreshed and no exchange is made.
        """
        if stale_token is not None and self.store.get_access_token() != stale_token:
            return self.store.get_access_token()
        if not self.has_refresh_capability():
            raise AuthenticationError(
                "Cannot refresh OAuth token: refresh token or client credentials missing",
                hints=self.diagnose(),
            )

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._run_refresh())
            self._pending.add_done_callback(self._release)
        return await asyncio.shield(self._pending)

    def _release(self, task: asyncio.Task) -> None:
        if self._pending is task:
            self._pending = None
        # Mark the outcome as retrieved even when every waiter went away
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self) -> str:
        refresh_token = self.store.get_refresh_token()
        self.refresh_count += 1
        logging.info("Refreshing OAuth access token")
        try:
            response = await asyncio.wait_for(
                self._exchange(refresh_token, self.store.client_id, self.store.client_secret),
                timeout=self.refresh_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AuthenticationError(
                f"Token refresh timed out after {self.refresh_timeout}s"
            ) from e
        except AuthenticationError:
            raise
        except (TransportError, aiohttp.ClientError) as e:
            raise AuthenticationError(f"Token refresh failed: {e}") from e

        if not isinstance(response, dict) or not response.get('access_token'):
            raise AuthenticationError("Token exchange response did not contain an access token")

        self.store.replace(
            response['access_token'],
            response.get('refresh_token'),
            expires_at_from(response),
        )
        logging.info(f"OAuth token refreshed ({mask_secret(self.store.get_access_token())})")
        return self.store.get_access_token()

    async def _default_exchange(
        self, refresh_token: str, client_id: str, client_secret: str
    ) -> TokenResponse:
        return await exchange_refresh_token(
            refresh_token, client_id, client_secret, oauth_url=self.oauth_url
        )
