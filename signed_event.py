import hashlib
import json
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from pydantic import ValidationError

from logging_config import get_logger
from schemas.rooms import Event
from utils import now

logger = get_logger(__name__)


def generate_private_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


def public_key_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def compute_event_id(pubkey: str, created_at: int, kind: int, tags, content: str) -> str:
    """sha256 over the compact JSON array [0, pubkey, created_at, kind, tags, content]."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def sign_event(draft: Mapping[str, Any], private_key: Ed25519PrivateKey) -> Event:
    pubkey = public_key_hex(private_key)
    created_at = draft.get("created_at") or now()
    kind = draft["kind"]
    tags = [list(tag) for tag in draft.get("tags", [])]
    content = draft.get("content", "")

    event_id = compute_event_id(pubkey, created_at, kind, tags, content)
    sig = private_key.sign(bytes.fromhex(event_id)).hex()
    return Event(
        id=event_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tags,
        content=content,
        sig=sig,
    )


class SignedEvent:
    """Read-only view over a raw transport event."""

    def __init__(self, raw: Union[Event, Dict[str, Any]]):
        self.event: Optional[Event]
        if isinstance(raw, Event):
            self.event = raw
        else:
            try:
                self.event = Event.model_validate(raw)
            except ValidationError as e:
                logger.debug(f"Malformed event structure: {e}")
                self.event = None

    def is_author(self, pubkey: str) -> bool:
        return self.event is not None and self.event.pubkey == pubkey

    def get_tag(self, name: str) -> Optional[str]:
        if self.event is None:
            return None
        for tag in self.event.tags:
            if len(tag) > 1 and tag[0] == name:
                return tag[1]
        return None

    @property
    def expiration(self) -> Optional[int]:
        value = self.get_tag("expiration")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def is_expired(self) -> bool:
        expiration = self.expiration
        return expiration is not None and expiration < now()

    @property
    def is_valid(self) -> bool:
        event = self.event
        if event is None:
            return False

        expected_id = compute_event_id(
            event.pubkey, event.created_at, event.kind, event.tags, event.content
        )
        if event.id != expected_id:
            return False

        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(event.pubkey))
            public_key.verify(bytes.fromhex(event.sig), bytes.fromhex(event.id))
        except (ValueError, InvalidSignature):
            return False
        return True
