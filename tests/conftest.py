import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from cipher import encrypt
from identity import derive
from relay import matches_any
from signed_event import generate_private_key, public_key_hex, sign_event
from utils import now


class FakeSubscription:
    def __init__(self, filters):
        self.filters = filters
        self.handlers = {"event": [], "eose": []}
        self.closed = False

    def on(self, name, fn):
        self.handlers[name].append(fn)

    def deliver(self, event):
        if self.closed:
            return
        for fn in list(self.handlers["event"]):
            fn(event)

    def eose(self):
        if self.closed:
            return
        for fn in list(self.handlers["eose"]):
            fn()

    def unsub(self):
        self.closed = True


class FakeClient:
    """In-memory transport client. Published events are delivered back to
    matching subscriptions on the next loop iteration, like a relay would."""

    def __init__(self, auto_eose=True, echo=True, fail_subscribe=False, fail_publish=False):
        self._key = generate_private_key()
        self.pubkey = public_key_hex(self._key)
        self.auto_eose = auto_eose
        self.echo = echo
        self.fail_subscribe = fail_subscribe
        self.fail_publish = fail_publish
        self.subscriptions: List[FakeSubscription] = []
        self.drafts: List[Dict[str, Any]] = []
        self.published = []

    async def subscribe(self, filters):
        if self.fail_subscribe:
            raise ConnectionError("relay unavailable")
        sub = FakeSubscription(filters)
        self.subscriptions.append(sub)
        if self.auto_eose:
            asyncio.get_running_loop().call_soon(sub.eose)
        return sub

    async def publish(self, draft):
        if self.fail_publish:
            raise ConnectionError("relay rejected event")
        self.drafts.append(draft)
        event = sign_event(draft, self._key)
        self.published.append(event)
        if self.echo:
            loop = asyncio.get_running_loop()
            for sub in self.subscriptions:
                if matches_any(event, sub.filters):
                    loop.call_soon(sub.deliver, event)
        return event


def make_event(
    secret: str,
    event_name: str,
    payload: Any = None,
    key=None,
    encrypted: bool = True,
    kind: int = 21111,
    created_at: Optional[int] = None,
    expiration: Optional[int] = None,
):
    """A signed room event as another participant would publish it."""
    identity = derive(secret)
    content = json.dumps({"eventName": event_name, "payload": payload})
    if encrypted:
        content = encrypt(content, identity.cipher_key)
    if expiration is None:
        expiration = now() + 3600
    draft = {
        "kind": kind,
        "created_at": created_at or now(),
        "tags": [["h", identity.room_id], ["expiration", str(expiration)]],
        "content": content,
    }
    return sign_event(draft, key or generate_private_key())


async def settle(rounds: int = 3):
    """Let callbacks scheduled with call_soon run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def client():
    return FakeClient()
