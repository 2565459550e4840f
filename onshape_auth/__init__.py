"""Onshape API Authentication Package.

Re-exports commonly used components for convenience.
"""
from .errors import (
    OnshapeAuthError,
    ConfigurationError,
    SigningError,
    AuthenticationError,
    TransportError,
    ApiError,
)
from .signing import (
    build_canonical_request,
    encode_query,
    sign,
    generate_nonce,
    content_md5,
    http_date,
)
from .oauth import (
    TokenState,
    OAuthTokenStore,
    OAuthAuthProvider,
    authorization_url,
    exchange_code,
    exchange_refresh_token,
    format_oauth_scopes,
)
from .providers import AuthProvider, ApiKeyAuthProvider, create_auth_provider
from .config import AuthConfig, load_config
from .client import OnshapeClient, get_session_info, list_documents
from .secrets import Secrets, load_secrets, save_secrets, mask_secret
from .cli import main

__all__ = [
    # Errors
    'OnshapeAuthError',
    'ConfigurationError',
    'SigningError',
    'AuthenticationError',
    'TransportError',
    'ApiError',
    # Signing
    'build_canonical_request',
    'encode_query',
    'sign',
    'generate_nonce',
    'content_md5',
    'http_date',
    # OAuth
    'TokenState',
    'OAuthTokenStore',
    'OAuthAuthProvider',
    'authorization_url',
    'exchange_code',
    'exchange_refresh_token',
    'format_oauth_scopes',
    # Providers
    'AuthProvider',
    'ApiKeyAuthProvider',
    'create_auth_provider',
    # Config
    'AuthConfig',
    'load_config',
    # Client
    'OnshapeClient',
    'get_session_info',
    'list_documents',
    # Secrets
    'Secrets',
    'load_secrets',
    'save_secrets',
    'mask_secret',
    # CLI
    'main',
]
