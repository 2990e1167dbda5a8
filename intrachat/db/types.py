from sqlalchemy.types import Text, TypeDecorator

from intrachat.utils import crypto


class EncryptedString(TypeDecorator):
    """Text column encrypted at rest with the configured content keys."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return crypto.cipher.encrypt(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return crypto.cipher.decrypt(value)
