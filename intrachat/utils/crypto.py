from cryptography.fernet import Fernet, InvalidToken

from intrachat.config import DATA_ENCRYPTION_KEYS

_PREFIX = "enc:"


class ContentCipher:
    """Fernet encryption for message content at rest.

    The first key encrypts; every key is tried on decrypt so keys can be
    rotated by prepending a new one. With no keys configured values are
    stored as-is.
    """

    def __init__(self, keys: list[str]):
        self._all = [Fernet(k.encode()) for k in keys]
        self._primary = self._all[0] if self._all else None

    @property
    def enabled(self) -> bool:
        return self._primary is not None

    def encrypt(self, value: str) -> str:
        if self._primary is None:
            return value
        token = self._primary.encrypt(value.encode("utf-8")).decode("utf-8")
        return _PREFIX + token

    def decrypt(self, value: str) -> str:
        if not value.startswith(_PREFIX):
            return value

        token = value[len(_PREFIX):].encode("utf-8")
        for f in self._all:
            try:
                return f.decrypt(token).decode("utf-8")
            except InvalidToken:
                pass
        raise ValueError("Unable to decrypt (no key matched)")


cipher = ContentCipher(DATA_ENCRYPTION_KEYS)
