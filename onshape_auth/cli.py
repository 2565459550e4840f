"""CLI entry point and argument parsing.

Credential checks, request-signing debug output and OAuth helpers.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .client import OnshapeClient, get_session_info
from .config import AuthConfig, load_config
from .errors import OnshapeAuthError
from .oauth import OAUTH_URL, authorization_url
from .providers import ApiKeyAuthProvider, create_auth_provider
from .secrets import get_or_prompt_secrets, load_secrets, mask_secret, save_secrets, prompt_secrets
from .signing import build_canonical_request


LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEFAULT_SECRETS_PATH = Path.home() / ".onshape-auth" / "secrets"

MASKED_HEADERS = ('Authorization', 'On-Nonce')


def parse_query(pairs: Optional[List[str]]) -> Dict[str, str]:
    """['a=1', 'b=x y'] -> {'a': '1', 'b': 'x y'}"""
    params = {}
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Query parameter must look like key=value: {pair!r}")
        params[key] = value
    return params


async def run_check(config: AuthConfig) -> int:
    provider = create_auth_provider(config)
    async with OnshapeClient(provider, base_url=config['base_url']) as client:
        info = await get_session_info(client)
    name = None
    if isinstance(info, dict):
        name = info.get('name') or info.get('email') or info.get('id')
    print(f"✓ Authenticated ({provider.get_method()}) as {name or 'unknown user'}")
    return 0


def run_sign(config: AuthConfig, method: str, path: str, query: Dict[str, str], body: Optional[str]) -> int:
    """Print what would be signed and sent, with secrets masked."""
    provider = ApiKeyAuthProvider(config.get('access_key') or '', config.get('secret_key') or '')
    headers = provider.sign_request(method, path, query, body)
    canonical = build_canonical_request(method, path, query, headers['Date'])

    print("String to sign:")
    for line in canonical.split("\n"):
        print(f"  {line}")
    print("\nHeaders:")
    for key, value in headers.items():
        shown = mask_secret(value, visible=6) if key in MASKED_HEADERS else value
        print(f"  {key}: {shown}")
    for hint in provider.diagnose():
        print(f"  note: {hint}")
    return 0


def run_setup(secrets_path: Path, auth_type: str) -> int:
    secrets_path.parent.mkdir(parents=True, exist_ok=True)
    existing = load_secrets(secrets_path) or {}
    entered = prompt_secrets(auth_type)
    save_secrets({**existing, **entered}, secrets_path)
    print(f"Saved to {secrets_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="onshape-auth",
        description="Onshape API authentication tools",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--secrets", type=Path, default=DEFAULT_SECRETS_PATH,
                        help="Encrypted credential file")
    parser.add_argument("--base-url", help="API base URL (default: ONSHAPE_BASE_URL or cad.onshape.com)")
    parser.add_argument("--auth-type", choices=["api_key", "oauth"], help="Force an auth scheme")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Verify credentials against /users/sessioninfo")

    sign = sub.add_parser("sign", help="Show the canonical string and signed headers for a request")
    sign.add_argument("method", type=str.upper, choices=["GET", "POST", "PUT", "PATCH", "DELETE"])
    sign.add_argument("path")
    sign.add_argument("--query", action="append", metavar="KEY=VALUE")
    sign.add_argument("--body", help="Request body exactly as it will be sent")

    auth_url = sub.add_parser("authorize-url", help="Print the OAuth authorization URL")
    auth_url.add_argument("--client-id", help="OAuth client ID (default: ONSHAPE_CLIENT_ID)")
    auth_url.add_argument("--redirect-uri", required=True)
    auth_url.add_argument("--scope", help="Space separated scopes (default: all)")
    auth_url.add_argument("--state")

    sub.add_parser("setup", help="Store API keys (or OAuth client details with --auth-type oauth) in the encrypted credential file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, load config, and dispatch."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    load_dotenv()

    if args.command == "setup":
        return run_setup(args.secrets, args.auth_type or "api_key")

    options = {'base_url': args.base_url, 'auth_type': args.auth_type}
    secrets_path = args.secrets if args.secrets.exists() else None

    try:
        if args.command == "authorize-url":
            config = load_config({**options, 'client_id': args.client_id})
            if not config.get('client_id'):
                print("Error: --client-id or ONSHAPE_CLIENT_ID is required")
                return 2
            print(authorization_url(
                config['client_id'], args.redirect_uri, args.scope, args.state,
                oauth_url=config.get('oauth_url') or OAUTH_URL,
            ))
            return 0

        config = load_config(options, secrets_path=secrets_path)
        if args.command == "sign":
            if not (config.get('access_key') and config.get('secret_key')):
                config.update(get_or_prompt_secrets(args.secrets))
            return run_sign(config, args.method, args.path, parse_query(args.query), args.body)

        return asyncio.run(run_check(config))
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except OnshapeAuthError as e:
        logging.debug("Command failed", exc_info=True)
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
