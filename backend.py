import redis
from functools import lru_cache
from typing import Iterable, List, Optional

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, ROOM_EXPIRATION_SECONDS
from redis_keys import REDIS_EVENTS_KEY, REDIS_ROOM_CHANNEL
from logging_config import get_logger
from schemas.rooms import Event
from signed_event import SignedEvent
from utils import now

logger = get_logger(__name__)


def connect_redis() -> redis.Redis:
    try:
        client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        # Test connection
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
        raise


class RedisBackend:
    """Relay storage: signed events per room plus a pub/sub channel per room."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client if redis_client is not None else connect_redis()
        # Separate connection for pub/sub (required by Redis); an injected client is shared
        if pubsub_client is not None:
            self.pubsub_client = pubsub_client
        elif redis_client is None:
            self.pubsub_client = connect_redis()
            logger.info("Redis pub/sub client connected successfully")
        else:
            self.pubsub_client = self.redis_client
        logger.info("Initializing RedisBackend")

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def get_room_events_key(self, room_id: str) -> str:
        return REDIS_EVENTS_KEY.format(slug=room_id)

    def store_event(self, room_id: str, event: Event, ttl: int) -> None:
        key = self.get_room_events_key(room_id)
        self.redis_client.zadd(key, {event.model_dump_json(): event.created_at})
        self.redis_client.expire(key, ttl)
        logger.debug(f"Stored event {event.id} for room {room_id} with TTL {ttl} seconds")

    def get_stored_events(self, room_id: str, since: Optional[int] = None, until: Optional[int] = None) -> List[Event]:
        """Stored events for a room, oldest first."""
        key = self.get_room_events_key(room_id)
        low = since if since is not None else "-inf"
        high = until if until is not None else "+inf"
        raw_events = self.redis_client.zrangebyscore(key, low, high)

        events = []
        for raw in raw_events:
            try:
                events.append(Event.model_validate_json(raw))
            except ValueError as e:
                logger.error(f"Skipping malformed stored event in room {room_id}: {e}")
        logger.debug(f"Room {room_id} has {len(events)} stored events in range")
        return events

    def publish_event(self, event: Event) -> int:
        """Store and broadcast an event under every room it is tagged with.

        Returns the number of pub/sub receivers reached.
        """
        room_ids = [tag[1] for tag in event.tags if len(tag) > 1 and tag[0] == "h"]
        if not room_ids:
            raise ValueError(f"Event {event.id} has no room ('h') tag")

        expiration = SignedEvent(event).expiration
        ttl = expiration - now() if expiration is not None else ROOM_EXPIRATION_SECONDS

        message_json = event.model_dump_json()
        receivers = 0
        for room_id in room_ids:
            if ttl > 0:
                self.store_event(room_id, event, ttl)
            else:
                logger.debug(f"Event {event.id} already expired, broadcasting without storing")
            channel = self.get_room_channel_name(room_id)
            subscribers = self.redis_client.publish(channel, message_json)
            receivers += subscribers
            logger.debug(f"Published event {event.id} to room {room_id} channel {channel}, {subscribers} subscribers")
        return receivers

    def subscribe_to_rooms(self, room_ids: Iterable[str]):
        """Create a pubsub subscriber for a set of room channels."""
        channels = [self.get_room_channel_name(room_id) for room_id in room_ids]
        logger.debug(f"Subscribing to Redis channels {channels}")
        pubsub = self.pubsub_client.pubsub(ignore_subscribe_messages=True)
        if channels:
            pubsub.subscribe(*channels)
        logger.debug(f"Successfully subscribed to {len(channels)} channels")
        return pubsub

    def delete_room_events(self, room_id: str) -> bool:
        logger.info(f"Deleting stored events for room {room_id}")
        deleted = self.redis_client.delete(self.get_room_events_key(room_id))
        logger.debug(f"Room {room_id} events deleted: {deleted}")
        return bool(deleted)


@lru_cache(maxsize=1)
def get_redis_backend() -> RedisBackend:
    return RedisBackend()
