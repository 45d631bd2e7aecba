import pytest

from cipher import CIPHER_MARKER, DecryptionError, decrypt, encrypt
from identity import derive

KEY = derive("cipher-test").cipher_key


def test_encrypted_content_carries_marker_and_hides_plaintext():
    ciphertext = encrypt('{"eventName": "chat"}', KEY)
    assert CIPHER_MARKER in ciphertext
    assert "chat" not in ciphertext
    assert decrypt(ciphertext, KEY) == '{"eventName": "chat"}'


def test_fresh_iv_per_message():
    assert encrypt("same", KEY) != encrypt("same", KEY)


def test_unicode_round_trip():
    assert decrypt(encrypt("héllo ✓", KEY), KEY) == "héllo ✓"


def test_wrong_key_fails():
    ciphertext = encrypt("x" * 40, KEY)
    with pytest.raises(DecryptionError):
        decrypt(ciphertext, derive("other").cipher_key)


@pytest.mark.parametrize("bad", ["not encrypted", "!!!?iv=AAAA", "AAAA?iv=AAAA"])
def test_malformed_ciphertext_fails(bad):
    with pytest.raises(DecryptionError):
        decrypt(bad, KEY)
