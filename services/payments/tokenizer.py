# services/payments/tokenizer.py
from __future__ import annotations
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from services.payments.errors import CryptoError


class TokenCipher:
    """
    Symmetric encryption for gateway-issued identifiers (payment source ids).

    The Fernet key is derived from the process secret, so any non-empty
    secret string works. Fernet tokens are authenticated: a corrupted or
    foreign token raises CryptoError instead of decrypting to something else.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("token secret is required")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        if plaintext is None or plaintext == "":
            raise CryptoError("Refusing to encrypt an empty identifier")
        return self._fernet.encrypt(str(plaintext).encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        if not token:
            raise CryptoError()
        try:
            raw = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError, ValueError) as exc:
            raise CryptoError() from exc
        return raw.decode("utf-8")
