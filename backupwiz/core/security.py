"""
Credential handling for the sync engine: HTTP Basic auth on the API and
decryption of tenant SSH/database passwords stored with Fernet.
"""

import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.exceptions import ConfigurationError

security = HTTPBasic()


def get_current_username(
    credentials: HTTPBasicCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Simple HTTP Basic Auth - checks username/password from settings
    """
    correct_username = settings.BASIC_AUTH_USERNAME
    correct_password = settings.BASIC_AUTH_PASSWORD

    if not correct_password:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Basic auth password not configured"
        )

    is_correct_username = secrets.compare_digest(
        credentials.username.encode("utf8"),
        correct_username.encode("utf8")
    )
    is_correct_password = secrets.compare_digest(
        credentials.password.encode("utf8"),
        correct_password.encode("utf8")
    )

    if not (is_correct_username and is_correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def decrypt_secret(ciphertext: Optional[str], key: Optional[str] = None) -> str:
    """Decrypt a Fernet-encrypted tenant secret.

    Raises:
        ConfigurationError: If no key is configured or the token does not match it.
    """
    if not ciphertext:
        raise ConfigurationError("Encrypted credential is empty")
    key = key or get_settings().ENCRYPTION_KEY
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key.encode()).decrypt(ciphertext.encode()).decode()
    except (InvalidToken, ValueError) as exc:
        raise ConfigurationError("Tenant credential could not be decrypted with ENCRYPTION_KEY") from exc


def encrypt_secret(plaintext: str, key: Optional[str] = None) -> str:
    key = key or get_settings().ENCRYPTION_KEY
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY is not configured")
    return Fernet(key.encode()).encrypt(plaintext.encode()).decode()
