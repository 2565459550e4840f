"""Auth providers and the selector that picks one per client.

Both providers expose the same two coroutines/methods, `get_auth_headers`
and `get_method`. The endpoint layer only ever calls `get_auth_headers`.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from typing_extensions import Protocol

from .errors import AuthenticationError, ConfigurationError
from .oauth import OAuthAuthProvider, OAuthTokenStore, OAUTH_URL
from .secrets import mask_secret
from .signing import Body, build_canonical_request, content_md5, generate_nonce, http_date, sign


AUTH_API_KEY = 'api_key'
AUTH_OAUTH = 'oauth'

_AUTH_TYPE_ALIASES = {
    'api_key': AUTH_API_KEY,
    'apikey': AUTH_API_KEY,
    'api-key': AUTH_API_KEY,
    'oauth': AUTH_OAUTH,
    'oauth2': AUTH_OAUTH,
}

# Onshape developer portal key lengths
ACCESS_KEY_LENGTH = 24
SECRET_KEY_LENGTH = 48


class AuthProvider(Protocol):
    async def get_auth_headers(
        self,
        method: str,
        path: str,
        query_params: Optional[Mapping[str, Any]] = None,
        body: Body = None
    ) -> Dict[str, str]:
        ...

    def get_method(self) -> str:
        ...

    def has_refresh_capability(self) -> bool:
        ...

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        ...

    def diagnose(self) -> List[str]:
        """Hints for a rejected request. Never contains a full secret."""
        ...


class ApiKeyAuthProvider:
    """HMAC signing with an Onshape API key pair."""

    method = AUTH_API_KEY

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = generate_nonce
    ):
        if not access_key or not secret_key:
            raise ConfigurationError("API key authentication requires both access key and secret key")
        self._access_key = access_key
        self._secret_key = secret_key
        self._clock = clock
        self._nonce_factory = nonce_factory

    @property
    def access_key(self) -> str:
        return self._access_key

    def get_method(self) -> str:
        return self.method

    def has_refresh_capability(self) -> bool:
        return False

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        raise AuthenticationError("API keys cannot be refreshed", hints=self.diagnose())

    async def get_auth_headers(
        self,
        method: str,
        path: str,
        query_params: Optional[Mapping[str, Any]] = None,
        body: Body = None
    ) -> Dict[str, str]:
        return self.sign_request(method, path, query_params, body)

    def sign_request(
        self,
        method: str,
        path: str,
        query_params: Optional[Mapping[str, Any]] = None,
        body: Body = None
    ) -> Dict[str, str]:
        """Synchronous core of get_auth_headers."""
        date = http_date(self._clock())
        canonical = build_canonical_request(method, path, query_params, date)
        signature = sign(self._secret_key, canonical)

        headers = {
            'Date': date,
            'Authorization': f"On {self._access_key}:{signature}",
            'On-Nonce': self._nonce_factory(),
        }
        md5 = content_md5(body)
        if md5:
            headers['Content-MD5'] = md5

        logging.debug(
            f"Signed {method.upper()} {path} with key {mask_secret(self._access_key)}"
            f"{' (with body)' if md5 else ''}"
        )
        return headers

    def diagnose(self) -> List[str]:
        """Checks for the usual causes of a rejected signature. Never echoes the secret."""
        hints = []
        for label, value, expected in (
            ('Access key', self._access_key, ACCESS_KEY_LENGTH),
            ('Secret key', self._secret_key, SECRET_KEY_LENGTH),
        ):
            if value != value.strip():
                hints.append(f"{label} has leading or trailing whitespace.")
            if any(c.isspace() for c in value.strip()):
                hints.append(f"{label} contains embedded whitespace.")
            if len(value.strip()) != expected:
                hints.append(f"{label} is {len(value.strip())} characters; Onshape keys are {expected}.")
        hints.append(f"Access key in use: {mask_secret(self._access_key)}")
        hints.append("Check that the system clock is correct; the Date header is part of the signature.")
        return hints


def normalize_auth_type(auth_type: Optional[str]) -> Optional[str]:
    if auth_type is None or not str(auth_type).strip():
        return None
    normalized = _AUTH_TYPE_ALIASES.get(str(auth_type).strip().lower())
    if normalized is None:
        raise ConfigurationError(
            f"Unknown auth type {auth_type!r}; expected 'api_key' or 'oauth'"
        )
    return normalized


def _can_obtain_token(config: Mapping[str, Any]) -> bool:
    return bool(config.get('refresh_token') and config.get('client_id') and config.get('client_secret'))


def resolve_auth_type(config: Mapping[str, Any]) -> str:
    """Explicit auth_type wins, otherwise infer from populated credentials."""
    explicit = normalize_auth_type(config.get('auth_type'))
    if explicit:
        return explicit
    if config.get('access_key') and config.get('secret_key'):
        return AUTH_API_KEY
    if config.get('access_token') or _can_obtain_token(config):
        return AUTH_OAUTH
    raise ConfigurationError(
        "No usable credentials: set ONSHAPE_ACCESS_KEY and ONSHAPE_SECRET_KEY, "
        "or ONSHAPE_OAUTH_TOKEN (or ONSHAPE_REFRESH_TOKEN with client id and secret)"
    )


def create_auth_provider(config: Mapping[str, Any], **kwargs: Any) -> AuthProvider:
    """Build the provider for a client. Chosen once; never re-decided per call."""
    auth_type = resolve_auth_type(config)
    logging.info(f"Using {auth_type} authentication")

    if auth_type == AUTH_API_KEY:
        return ApiKeyAuthProvider(config.get('access_key') or '', config.get('secret_key') or '', **kwargs)

    if not (config.get('access_token') or _can_obtain_token(config)):
        raise ConfigurationError(
            "OAuth authentication requires an access token (ONSHAPE_OAUTH_TOKEN) "
            "or a refresh token with client id and secret"
        )
    store = OAuthTokenStore(
        access_token=config.get('access_token'),
        refresh_token=config.get('refresh_token'),
        client_id=config.get('client_id'),
        client_secret=config.get('client_secret'),
        expires_at=config.get('expires_at'),
    )
    return OAuthAuthProvider(store, oauth_url=config.get('oauth_url') or OAUTH_URL, **kwargs)
