"""Fernet symmetric encryption for storing exchange credentials."""

from cryptography.fernet import Fernet, InvalidToken

from dca_service.errors import ConfigurationError


def _get_fernet(key: str) -> Fernet:
    if not key:
        raise ConfigurationError(
            "DCA_ENCRYPTION_KEY not set. Generate one with: "
            "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        )
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt a string and return base64-encoded ciphertext."""
    return _get_fernet(key).encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt a base64-encoded ciphertext and return plaintext."""
    try:
        return _get_fernet(key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        raise ConfigurationError("Stored credential cannot be decrypted with DCA_ENCRYPTION_KEY") from e
