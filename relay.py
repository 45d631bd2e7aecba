import asyncio
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from pydantic import ValidationError

from backend import RedisBackend
from constants import RELAY_POLL_TIMEOUT
from logging_config import get_logger
from schemas.rooms import Event
from signed_event import generate_private_key, public_key_hex, sign_event

logger = get_logger(__name__)

Filter = Mapping[str, Any]


def matches_filter(event: Event, flt: Filter) -> bool:
    """True when the event satisfies every constraint in the filter.

    Supported keys: ids, authors, kinds, since, until and ``#<tag>`` lists.
    ``limit`` only affects stored-event replay.
    """
    if "ids" in flt and event.id not in flt["ids"]:
        return False
    if "authors" in flt and event.pubkey not in flt["authors"]:
        return False
    if "kinds" in flt and event.kind not in flt["kinds"]:
        return False
    if flt.get("since") is not None and event.created_at < flt["since"]:
        return False
    if flt.get("until") is not None and event.created_at > flt["until"]:
        return False

    for key, wanted in flt.items():
        if not key.startswith("#"):
            continue
        name = key[1:]
        values = {tag[1] for tag in event.tags if len(tag) > 1 and tag[0] == name}
        if not values.intersection(wanted):
            return False
    return True


def matches_any(event: Event, filters: Iterable[Filter]) -> bool:
    return any(matches_filter(event, flt) for flt in filters)


class Subscription:
    """Replays stored events for the filtered rooms, signals end-of-stored-events,
    then streams live events from Redis pub/sub.

    Handlers: ``"event"`` receives an ``Event``; ``"eose"`` takes no arguments.
    """

    HANDLER_NAMES = ("event", "eose")

    def __init__(self, backend: RedisBackend, filters: List[Filter]):
        self.id = uuid.uuid4().hex
        self.backend = backend
        self.filters = [dict(flt) for flt in filters]
        self.room_ids = sorted({room_id for flt in self.filters for room_id in flt.get("#h", [])})
        self._handlers: Dict[str, List[Callable]] = {name: [] for name in self.HANDLER_NAMES}
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def on(self, name: str, fn: Callable) -> None:
        if name not in self._handlers:
            raise ValueError(f"Unknown subscription handler '{name}'")
        self._handlers[name].append(fn)

    def _fire(self, name: str, *args) -> None:
        for fn in list(self._handlers[name]):
            try:
                fn(*args)
            except Exception as e:
                logger.error(f"Subscription {self.id} '{name}' handler failed: {e}", exc_info=True)

    def open(self) -> None:
        """Blocking: subscribe to the room channels. Runs in an executor."""
        if not self.room_ids:
            logger.warning(f"Subscription {self.id} has no '#h' constraint and will receive nothing")
        self._pubsub = self.backend.subscribe_to_rooms(self.room_ids)

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._listen())

    def _stored_events(self) -> List[Event]:
        events: Dict[str, Event] = {}
        for flt in self.filters:
            matched = []
            for room_id in flt.get("#h", []):
                for event in self.backend.get_stored_events(room_id, flt.get("since"), flt.get("until")):
                    if matches_filter(event, flt):
                        matched.append(event)
            matched.sort(key=lambda e: e.created_at)
            limit = flt.get("limit")
            if limit is not None:
                matched = matched[-limit:] if limit > 0 else []
            for event in matched:
                events[event.id] = event
        return sorted(events.values(), key=lambda e: e.created_at)

    def _get_message(self):
        """Blocking call to get next message from Redis pub/sub with timeout."""
        try:
            return self._pubsub.get_message(timeout=RELAY_POLL_TIMEOUT, ignore_subscribe_messages=True)
        except Exception as e:
            logger.error(f"Error in pubsub.get_message() for subscription {self.id}: {e}", exc_info=True)
            return None

    async def _listen(self):
        logger.info(f"Starting relay listener {self.id} for rooms: {self.room_ids}")
        loop = asyncio.get_running_loop()
        try:
            stored = await loop.run_in_executor(None, self._stored_events)
            replayed = {event.id for event in stored}
            logger.debug(f"Replaying {len(stored)} stored events for subscription {self.id}")
            for event in stored:
                self._fire("event", event)
            self._fire("eose")

            while not self.closed:
                message = await loop.run_in_executor(None, self._get_message)

                if message is None:
                    # Timeout or no message, continue loop
                    continue
                if message.get("type") != "message":
                    continue

                try:
                    event = Event.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.error(f"Error parsing relay message for subscription {self.id}: {e}")
                    continue

                if event.id in replayed:
                    replayed.discard(event.id)
                    continue
                if matches_any(event, self.filters):
                    self._fire("event", event)

        except asyncio.CancelledError:
            # Task was cancelled, clean up
            logger.info(f"Relay listener {self.id} cancelled")
        except Exception as e:
            logger.error(f"Error in relay listener {self.id}: {e}", exc_info=True)
        finally:
            self._close_pubsub()

    def _close_pubsub(self):
        if self._pubsub is None:
            return
        try:
            self._pubsub.close()
            logger.debug(f"Closed pub/sub connection for subscription {self.id}")
        except Exception as e:
            logger.error(f"Error closing pub/sub for subscription {self.id}: {e}")
        self._pubsub = None

    def unsub(self) -> None:
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        elif self._task is None:
            self._close_pubsub()


class RelayClient:
    """Transport client: signs drafts with an Ed25519 key and relays them
    through Redis."""

    def __init__(self, backend: RedisBackend, private_key: Optional[Ed25519PrivateKey] = None):
        self.backend = backend
        self._private_key = private_key if private_key is not None else generate_private_key()
        self.pubkey = public_key_hex(self._private_key)

    async def subscribe(self, filters: List[Filter]) -> Subscription:
        sub = Subscription(self.backend, filters)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, sub.open)
        sub.start()
        return sub

    async def publish(self, draft: Mapping[str, Any]) -> Event:
        event = sign_event(draft, self._private_key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.backend.publish_event, event)
        return event
