import base64
import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# Separates the base64 ciphertext from the base64 IV; ingestion uses it to
# tell encrypted content from plaintext JSON.
CIPHER_MARKER = "?iv="

_IV_BYTES = 16


class DecryptionError(ValueError):
    pass


def encrypt(plaintext: str, key: bytes) -> str:
    iv = os.urandom(_IV_BYTES)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()

    return (
        base64.b64encode(ciphertext).decode("ascii")
        + CIPHER_MARKER
        + base64.b64encode(iv).decode("ascii")
    )


def decrypt(ciphertext: str, key: bytes) -> str:
    if CIPHER_MARKER not in ciphertext:
        raise DecryptionError("Content is not encrypted")

    body, iv_b64 = ciphertext.split(CIPHER_MARKER, 1)
    try:
        data = base64.b64decode(body, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)
        if len(iv) != _IV_BYTES:
            raise DecryptionError(f"IV must be {_IV_BYTES} bytes, got {len(iv)}")

        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except DecryptionError:
        raise
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Failed to decrypt content: {e}") from e
