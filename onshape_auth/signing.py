"""Canonical request strings, HMAC signatures and nonces.

Pure functions only. Nothing in this module touches the network, the clock
or the filesystem; callers pass the date in.
"""
import base64
import hashlib
import hmac
import secrets
from email.utils import formatdate
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote

from .errors import ConfigurationError, SigningError


SIGNED_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

# Characters JavaScript's encodeURIComponent leaves alone
_UNRESERVED = "-_.!~*'()"

MIN_NONCE_BYTES = 16

Body = Union[str, bytes, None]


def http_date(timestamp: Optional[float] = None) -> str:
    """RFC 1123 date, e.g. 'Mon, 01 Jan 2018 00:00:00 GMT'."""
    return formatdate(timestamp, usegmt=True)


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def encode_query(query_params: Optional[Mapping[str, Any]]) -> str:
    """Sorted, percent-encoded 'key=value&...' string. Empty if nothing to send.

    Keys are sorted by their raw value with plain ordinal comparison so a
    signer and a verifier agree regardless of locale.
    """
    if not query_params:
        return ""
    items = [(str(k), v) for k, v in query_params.items() if v is not None]
    items.sort(key=lambda kv: kv[0])
    return "&".join(
        f"{quote(key, safe=_UNRESERVED)}={quote(_scalar_to_str(value), safe=_UNRESERVED)}"
        for key, value in items
    )


def normalize_path(path: str) -> str:
    return path if path.startswith('/') else '/' + path


def build_canonical_request(
    method: str,
    path: str,
    query_params: Optional[Mapping[str, Any]],
    date: str
) -> str:
    """Build the exact string that gets signed.

    Layout is three lines, each lowercased on its own:

        method
        /path?sorted=query   (or /path when there is no query)
        date
    """
    if not method or method.upper() not in SIGNED_METHODS:
        raise SigningError(f"Unsupported HTTP method for signing: {method!r}")
    if not date:
        raise SigningError("Cannot sign a request without a date")

    full_path = normalize_path(path or "")
    query_string = encode_query(query_params)
    if query_string:
        full_path = f"{full_path}?{query_string}"

    return "\n".join([method.lower(), full_path.lower(), date.lower()])


def sign(secret: Optional[str], canonical_string: str) -> str:
    """Base64 HMAC-SHA256 of the canonical string."""
    if not secret:
        raise ConfigurationError("Cannot sign request: secret key is empty")
    try:
        digest = hmac.new(
            secret.encode('utf-8'),
            canonical_string.encode('utf-8'),
            hashlib.sha256
        ).digest()
    except (AttributeError, TypeError) as e:
        raise SigningError(f"Failed to compute request signature: {e}") from e
    return base64.b64encode(digest).decode('ascii')


def generate_nonce(num_bytes: int = MIN_NONCE_BYTES) -> str:
    """Base64 of `num_bytes` bytes from the OS CSPRNG."""
    if num_bytes < MIN_NONCE_BYTES:
        raise ValueError(f"Nonce must be at least {MIN_NONCE_BYTES} bytes, got {num_bytes}")
    return base64.b64encode(secrets.token_bytes(num_bytes)).decode('ascii')


def body_bytes(body: Body) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    return body.encode('utf-8')


def content_md5(body: Body) -> Optional[str]:
    """Base64 MD5 of the body as transmitted, or None for an empty body."""
    raw = body_bytes(body)
    if not raw:
        return None
    return base64.b64encode(hashlib.md5(raw).digest()).decode('ascii')
