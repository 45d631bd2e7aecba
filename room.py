import asyncio
import json
from typing import Any, Dict, List, Optional, Union

from cipher import CIPHER_MARKER, decrypt, encrypt
from event_cache import CacheEntry, EventCache
from identity import derive
from listeners import CONNECTED, ERROR, LEAVE, RESERVED_EVENTS, ListenerRegistry
from logging_config import get_logger
from schemas.rooms import Envelope, Event, RoomConfig
from signed_event import SignedEvent
from utils import is_expired, now

logger = get_logger(__name__)


class RoomNotConnectedError(RuntimeError):
    pass


class Room(ListenerRegistry):
    """An encrypted, many-to-many event channel keyed by a shared secret.

    Must be created inside a running event loop: the constructor schedules the
    subscription and returns straight away with ``connected`` still False.
    Await ``wait_connected()`` to know when the relay has finished replaying
    stored events.
    """

    def __init__(
        self,
        client,
        secret: str,
        config: Optional[Union[RoomConfig, Dict[str, Any]]] = None,
    ):
        super().__init__()
        identity = derive(secret)
        self.cipher_key = identity.cipher_key
        self._id = identity.room_id
        self.client = client
        if isinstance(config, RoomConfig):
            self.config = config
        else:
            self.config = RoomConfig(**(config or {}))
        self.cache = EventCache(self.config.cache_size)
        self.connected = False
        self.closed = False

        self._sub = None
        self._eose_seen = False
        self._ready = asyncio.Event()
        self._init_task = asyncio.get_running_loop().create_task(self._subscribe())

    @property
    def id(self) -> str:
        return self._id

    @property
    def members(self) -> List[str]:
        """Distinct authors in the cache, limited to recently active ones when
        ``inactive_limit`` is set."""
        limit = self.config.inactive_limit
        entries = self.cache.entries()
        if limit is not None:
            entries = [e for e in entries if not is_expired(e.envelope.created_at, limit)]
        return list(dict.fromkeys(e.envelope.pubkey for e in entries))

    async def wait_connected(self, timeout: Optional[float] = None) -> "Room":
        """Wait for the subscription to open and stored events to replay.

        `timeout` bounds both phases together. Raises `RoomNotConnectedError`
        if the room is left before it connects.
        """
        await asyncio.wait_for(self._wait_ready(), timeout)
        return self

    async def _wait_ready(self):
        # shield: a waiter timing out must not cancel the shared init task
        try:
            await asyncio.shield(self._init_task)
        except asyncio.CancelledError:
            if self._init_task.cancelled():
                raise RoomNotConnectedError("Room was left before it connected")
            raise
        await self._ready.wait()
        if self.closed:
            raise RoomNotConnectedError("Room was left before it connected")

    async def _subscribe(self):
        flt = dict(self.config.filter)
        sub_filter = {
            **flt,
            "kinds": [*flt.get("kinds", []), self.config.kind],
            "#h": [self.id],
        }
        logger.info(f"Opening subscription for room {self.id}")
        try:
            self._sub = await self.client.subscribe([sub_filter])
        except Exception as e:
            logger.error(f"Failed to subscribe to room {self.id}: {e}", exc_info=True)
            raise

        self._sub.on("event", self._handle_event)
        self._sub.on("eose", self._on_eose)

    def _on_eose(self):
        if self._eose_seen or self.closed:
            return
        self._eose_seen = True
        self.connected = True
        self._ready.set()
        logger.info(f"Room {self.id} connected")
        self.emit(CONNECTED, self)

    def _handle_event(self, event: Union[Event, Dict[str, Any]]):
        signed = SignedEvent(event)
        echoed = not self.config.allow_echo and signed.is_author(self.client.pubkey or "")

        if echoed or signed.is_expired or not signed.is_valid:
            logger.debug(
                f"Dropped event in room {self.id}: echoed={echoed}, "
                f"expired={signed.is_expired}, invalid={not signed.is_valid}"
            )
            return

        envelope = signed.event
        content = envelope.content

        try:
            if isinstance(content, str) and CIPHER_MARKER in content:
                content = decrypt(content, self.cipher_key)

            parsed = Envelope.model_validate(json.loads(content))
            if parsed.event_name in RESERVED_EVENTS:
                raise ValueError(f"Reserved event name '{parsed.event_name}' in room content")
            payload = parsed.payload
            if self.config.validator is not None:
                payload = self.config.validator(parsed.event_name, payload)
        except Exception as e:
            logger.warning(f"Rejected event {envelope.id} in room {self.id}: {e}")
            self.emit(ERROR, e)
            return

        self.cache.push(CacheEntry(parsed.event_name, payload, envelope))
        self.emit(parsed.event_name, payload, envelope)

    async def publish(
        self,
        event_name: str,
        payload: Any = None,
        template: Optional[Dict[str, Any]] = None,
    ) -> Optional[Event]:
        if not self.connected:
            raise RoomNotConnectedError("Not connected to room!")

        rest = dict(template or {})
        temp_tags = rest.pop("tags", None) or []

        try:
            if event_name in RESERVED_EVENTS:
                raise ValueError(f"Cannot publish reserved event name '{event_name}'")

            content = json.dumps({"eventName": event_name, "payload": payload})

            if self.config.encryption:
                content = encrypt(content, self.cipher_key)

            tags = [
                *self.config.tags,
                *temp_tags,
                ["h", self.id],
                ["expiration", str(now() + self.config.expiration)],
            ]
            draft = {"kind": self.config.kind, **rest, "tags": tags, "content": content}

            event = await self.client.publish(draft)
            logger.debug(f"Published '{event_name}' to room {self.id}")
            return event
        except Exception as e:
            logger.error(f"Failed to publish '{event_name}' to room {self.id}: {e}", exc_info=True)
            self.emit(ERROR, e)
            return None

    pub = publish

    def leave(self):
        if not self._init_task.done():
            self._init_task.cancel()
        if self._sub is not None:
            self._sub.unsub()
        self.connected = False
        self.closed = True
        # wake pending wait_connected() calls so they fail fast
        self._ready.set()
        logger.info(f"Left room {self.id}")
        self.emit(LEAVE, self.id)
