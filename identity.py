import hashlib
from typing import NamedTuple


class RoomIdentity(NamedTuple):
    cipher_key: bytes
    room_id: str


def derive(secret: str) -> RoomIdentity:
    """Derive the symmetric key and the wire-visible room id from a shared secret.

    The id is a digest of the key rather than of the secret, so the tag seen by
    the relay never equals key material.
    """
    cipher_key = hashlib.sha256(secret.encode("utf-8")).digest()
    room_id = hashlib.sha256(cipher_key).hexdigest()
    return RoomIdentity(cipher_key=cipher_key, room_id=room_id)
