"""Credential file and secret masking.

Stores API keys and OAuth tokens encrypted on disk for the command line.
The signing layer itself never writes anything here.
"""
import base64
import getpass
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional
from typing_extensions import TypedDict

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


FILE_VERSION = 1
KDF_ITERATIONS = 480000
SALT_BYTES = 16


class Secrets(TypedDict, total=False):
    access_key: str
    secret_key: str
    access_token: str
    refresh_token: str
    client_id: str
    client_secret: str


# On-disk camelCase names -> Secrets keys
_FILE_KEYS = {
    'accessKey': 'access_key',
    'secretKey': 'secret_key',
    'accessToken': 'access_token',
    'refreshToken': 'refresh_token',
    'clientId': 'client_id',
    'clientSecret': 'client_secret',
}

# (key, label, hidden) per auth scheme
_PROMPTS = {
    'api_key': (
        ('access_key', "Access Key", False),
        ('secret_key', "Secret Key", True),
    ),
    'oauth': (
        ('client_id', "OAuth Client ID", False),
        ('client_secret', "OAuth Client Secret", True),
        ('refresh_token', "Refresh Token", True),
    ),
}

_cached_password: Optional[str] = None


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """'abcd…wxyz' style mask. Short values are fully hidden."""
    if not value:
        return "<empty>"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}…{value[-visible:]}"


def derive_key(password: str, salt: bytes) -> bytes:
    """PBKDF2-SHA256 -> urlsafe base64 key usable by Fernet."""
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=KDF_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(password.encode('utf-8')))


def _fernet(password: str, salt: bytes) -> Fernet:
    return Fernet(derive_key(password, salt))


def _to_file_dict(secrets: Secrets) -> Dict[str, str]:
    reverse = {v: k for k, v in _FILE_KEYS.items()}
    return {reverse[k]: v for k, v in secrets.items() if v and k in reverse}


def _from_file_dict(data: Dict[str, str]) -> Secrets:
    secrets: Secrets = {}
    for file_key, key in _FILE_KEYS.items():
        value = data.get(file_key) or data.get(key)
        if value:
            secrets[key] = value  # type: ignore[literal-required]
    return secrets


def encrypt_secrets(secrets: Secrets, password: str) -> dict:
    salt = os.urandom(SALT_BYTES)
    token = _fernet(password, salt).encrypt(json.dumps(_to_file_dict(secrets)).encode('utf-8'))
    return {
        'version': FILE_VERSION,
        'salt': base64.b64encode(salt).decode('ascii'),
        'data': token.decode('ascii'),
    }


def decrypt_secrets(storage: dict, password: str) -> Secrets:
    salt = base64.b64decode(storage['salt'])
    plaintext = _fernet(password, salt).decrypt(storage['data'].encode('ascii'))
    return _from_file_dict(json.loads(plaintext))


def prompt_password(confirm: bool = False) -> str:
    while True:
        password = getpass.getpass("  Encryption password: ")
        if not password:
            print("  Password cannot be empty.")
        elif confirm and getpass.getpass("  Confirm password: ") != password:
            print("  Passwords do not match. Try again.")
        else:
            return password


def get_password(confirm: bool = False) -> str:
    """Prompt once per process; later loads and saves reuse the answer."""
    global _cached_password
    if _cached_password is None:
        _cached_password = prompt_password(confirm=confirm)
    return _cached_password


def load_secrets(path: Path) -> Optional[Secrets]:
    """Read the credential file. Returns None when missing or unreadable.

    Encrypted (version 1) files ask for the password; plaintext files from
    earlier versions are read as-is and encrypted on the next save.
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return None

    if data.get('version') != FILE_VERSION:
        return _from_file_dict(data) or None

    try:
        return decrypt_secrets(data, get_password())
    except (InvalidToken, KeyError, ValueError) as e:
        logging.error(f"Failed to decrypt secrets at {path}: {type(e).__name__}")
        return None


def save_secrets(secrets: Secrets, path: Path) -> None:
    storage = encrypt_secrets(secrets, get_password(confirm=True))
    with open(path, 'w') as f:
        json.dump(storage, f, indent=2)
    logging.info(f"Saved encrypted secrets to {path}")


def _read(label: str, hidden: bool) -> str:
    reader = getpass.getpass if hidden else input
    while True:
        try:
            # Pasted keys often carry stray whitespace, which breaks the signature
            return reader(f"  {label}: ").strip()
        except UnicodeDecodeError:
            print("  Error: Invalid characters. Please try again.")


def prompt_secrets(auth_type: str = 'api_key') -> Secrets:
    print("\n--- Onshape API Credentials ---")
    if auth_type == 'oauth':
        print("Enter your OAuth application details (from Developer Portal):\n")
    else:
        print("Enter your Onshape API keys (from Developer Portal):\n")

    secrets: Secrets = {}
    for key, label, hidden in _PROMPTS[auth_type]:
        value = _read(label, hidden)
        if value:
            secrets[key] = value  # type: ignore[literal-required]
    return secrets


def get_or_prompt_secrets(path: Path, auth_type: str = 'api_key') -> Secrets:
    secrets = load_secrets(path)
    if secrets:
        return secrets

    print(f"No valid secrets found at {path}")
    secrets = prompt_secrets(auth_type)

    if input("\nSave these credentials for future use? [y/N]: ").strip().lower() == 'y':
        save_secrets(secrets, path)
        print(f"Saved to {path}")
    return secrets
