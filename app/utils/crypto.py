from functools import lru_cache

from cryptography.fernet import Fernet

from settings import settings


@lru_cache(maxsize=1)
def _cipher_suite() -> Fernet:
    return Fernet(settings.token_encryption_key.encode())


class TokenCipher:
    """Encrypts OAuth tokens before they reach the credentials table."""

    @staticmethod
    def encrypt(token: str | None) -> str | None:
        if token is None:
            return None
        return _cipher_suite().encrypt(token.encode()).decode()

    @staticmethod
    def decrypt(token: str | None) -> str | None:
        if token is None:
            return None
        return _cipher_suite().decrypt(token.encode()).decode()
