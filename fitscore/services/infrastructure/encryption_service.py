"""
Encryption service for CRM credentials.
Uses Fernet (AES-CBC with a random IV per message, HMAC-authenticated) for storage at rest.
"""

from cryptography.fernet import Fernet, InvalidToken

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


def _get_fernet() -> Fernet:
    """
    Get Fernet instance with encryption key from settings.

    Raises:
        EncryptionError: If encryption key is missing or malformed
    """
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(settings.ENCRYPTION_KEY.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> bytes:
    """
    Encrypt a credential string for BYTEA storage.

    Raises:
        EncryptionError: If the token is empty or encryption fails
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    return _get_fernet().encrypt(token.encode("utf-8"))


def decrypt_token(encrypted_token: bytes | memoryview) -> str:
    """
    Decrypt a credential read back from the database.

    Raises:
        EncryptionError: If the ciphertext is empty, tampered with, or from another key
    """
    if isinstance(encrypted_token, memoryview):
        encrypted_token = encrypted_token.tobytes()
    if not encrypted_token or not isinstance(encrypted_token, bytes):
        raise EncryptionError("Encrypted token must be non-empty bytes")

    try:
        return _get_fernet().decrypt(encrypted_token).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token")
        raise EncryptionError("Invalid or corrupted token") from e


def validate_encryption_config() -> bool:
    """Round-trip a sample value to confirm the configured key works."""
    try:
        sample = "fitscore_encryption_check"
        is_valid = decrypt_token(encrypt_token(sample)) == sample
    except EncryptionError as e:
        logger.error("Encryption configuration validation failed", error=str(e))
        return False

    if is_valid:
        logger.info("Encryption configuration validated successfully")
    else:
        logger.error("Encryption validation failed - data mismatch")
    return is_valid


def encrypt_credentials(access_token: str, refresh_token: str) -> tuple[bytes, bytes]:
    """Encrypt a CRM access/refresh credential pair."""
    return encrypt_token(access_token), encrypt_token(refresh_token)


def decrypt_credentials(
    encrypted_access: bytes | memoryview, encrypted_refresh: bytes | memoryview
) -> tuple[str, str]:
    """Decrypt a CRM access/refresh credential pair."""
    return decrypt_token(encrypted_access), decrypt_token(encrypted_refresh)
