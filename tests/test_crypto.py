import pytest
from cryptography.fernet import Fernet

from intrachat.utils.crypto import ContentCipher


def test_disabled_cipher_stores_plaintext():
    cipher = ContentCipher([])

    assert not cipher.enabled
    assert cipher.encrypt('hello') == 'hello'
    assert cipher.decrypt('hello') == 'hello'


def test_old_key_still_decrypts_after_rotation():
    old, new = Fernet.generate_key().decode(), Fernet.generate_key().decode()
    token = ContentCipher([old]).encrypt('hello')

    rotated = ContentCipher([new, old])

    assert token.startswith('enc:')
    assert rotated.decrypt(token) == 'hello'
    assert rotated.encrypt('hello') != token


def test_unknown_key_fails_loudly():
    token = ContentCipher([Fernet.generate_key().decode()]).encrypt('hello')

    with pytest.raises(ValueError):
        ContentCipher([Fernet.generate_key().decode()]).decrypt(token)


def test_plaintext_rows_survive_enabling_encryption():
    assert ContentCipher([Fernet.generate_key().decode()]).decrypt('legacy row') == 'legacy row'
