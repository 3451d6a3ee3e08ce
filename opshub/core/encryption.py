"""Field encryption for provider secrets (CTM API keys) stored at rest."""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from opshub.core.config import settings

SEALED_PREFIX = "enc:"


class SecretDecryptionError(ValueError):
    """Stored ciphertext is unprefixed, truncated or sealed with another key."""

    pass


@lru_cache(maxsize=1)
def _cipher(key: str) -> Fernet:
    return Fernet(key.encode())


def get_cipher() -> Fernet:
    if not settings.DATA_ENCRYPTION_KEY:
        raise RuntimeError("DATA_ENCRYPTION_KEY is not set; provider secrets cannot be stored")
    return _cipher(settings.DATA_ENCRYPTION_KEY)


def is_sealed(value: str | None) -> bool:
    return bool(value) and value.startswith(SEALED_PREFIX)


def encrypt_secret(value: str) -> str:
    """Seal a plaintext secret; already-sealed values pass through unchanged."""
    if not value or is_sealed(value):
        return value
    return SEALED_PREFIX + get_cipher().encrypt(value.encode()).decode()


def decrypt_secret(value: str) -> str:
    if not value:
        return value
    if not is_sealed(value):
        raise SecretDecryptionError("Stored secret is not encrypted")
    try:
        return get_cipher().decrypt(value[len(SEALED_PREFIX) :].encode()).decode()
    except InvalidToken as exc:
        raise SecretDecryptionError("Stored secret could not be decrypted") from exc
