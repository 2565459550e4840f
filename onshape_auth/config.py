"""Client configuration from explicit options, environment and credential file."""
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional
from typing_extensions import TypedDict

from .secrets import load_secrets


API_BASE = "https://cad.onshape.com/api/v12"


class AuthConfig(TypedDict, total=False):
    auth_type: str
    access_key: str
    secret_key: str
    access_token: str
    refresh_token: str
    client_id: str
    client_secret: str
    expires_at: float
    base_url: str
    oauth_url: str


# Config key -> environment variables, first match wins
ENV_VARS = {
    'auth_type': ('ONSHAPE_AUTH_TYPE', 'ONSHAPE_AUTH_METHOD'),
    'access_key': ('ONSHAPE_ACCESS_KEY',),
    'secret_key': ('ONSHAPE_SECRET_KEY',),
    'access_token': ('ONSHAPE_OAUTH_TOKEN', 'ONSHAPE_ACCESS_TOKEN'),
    'refresh_token': ('ONSHAPE_REFRESH_TOKEN',),
    'client_id': ('ONSHAPE_CLIENT_ID', 'OAUTH_CLIENT_ID'),
    'client_secret': ('ONSHAPE_CLIENT_SECRET', 'OAUTH_CLIENT_SECRET'),
    'base_url': ('ONSHAPE_BASE_URL',),
    'oauth_url': ('ONSHAPE_OAUTH_URL', 'OAUTH_URL'),
}


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> AuthConfig:
    environ = os.environ if environ is None else environ
    config: AuthConfig = {}
    for key, names in ENV_VARS.items():
        for name in names:
            value = environ.get(name)
            if value:
                config[key] = value  # type: ignore[literal-required]
                break
    return config


def load_config(
    options: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    secrets_path: Optional[Path] = None
) -> AuthConfig:
    """Merge sources. Each key is sourced independently.

    Precedence: explicit options, then environment, then the credential file.
    Empty strings and None count as unset.
    """
    config: AuthConfig = {}

    if secrets_path is not None:
        stored = load_secrets(secrets_path)
        if stored:
            logging.debug(f"Loaded credentials from {secrets_path}")
            config.update(stored)

    config.update(config_from_env(environ))

    for key, value in (options or {}).items():
        if value is not None and value != '':
            config[key] = value  # type: ignore[literal-required]

    config.setdefault('base_url', API_BASE)
    config['base_url'] = config['base_url'].rstrip('/')
    return config
