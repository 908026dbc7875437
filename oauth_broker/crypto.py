"""
Encryption of upstream tokens held in the session store.
Fernet (AES-CBC + HMAC); key from OAUTH_BROKER_TOKEN_KEY or generated per process.
"""
import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def _fernet_for(key: str | bytes | None) -> Fernet:
    if not key:
        return Fernet(Fernet.generate_key())
    if isinstance(key, str):
        key = key.encode("utf-8")
    try:
        return Fernet(key)
    except ValueError:
        # Not a Fernet key: derive one from the passphrase
        return Fernet(base64.urlsafe_b64encode(hashlib.sha256(key).digest()))


class TokenCipher:
    def __init__(self, key: str | bytes | None = None):
        self._fernet = _fernet_for(key)

    def seal(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def unseal(self, value: str | None) -> str | None:
        """Decrypt; a value sealed under another key reads as absent."""
        if value is None:
            return None
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.warning("Could not decrypt stored upstream token (key changed?)")
            return None
