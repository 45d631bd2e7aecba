import asyncio
from typing import Any, Callable, Dict, Optional

from backend import get_redis_backend
from constants import ROOM_CONNECT_TIMEOUT
from identity import derive
from logging_config import get_logger
from relay import RelayClient
from room import Room

logger = get_logger(__name__)


def default_client_factory() -> RelayClient:
    return RelayClient(get_redis_backend())


class RoomHub:
    """Rooms joined by this process, keyed by room id.

    All rooms share one transport client, created on first use.
    """

    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory or default_client_factory
        self._client = None
        self.rooms: Dict[str, Room] = {}

    @property
    def client(self):
        if self._client is None:
            self._client = self._client_factory()
            logger.info(f"Created transport client with pubkey {self._client.pubkey}")
        return self._client

    async def join(self, secret: str, config: Optional[Dict[str, Any]] = None, timeout: float = ROOM_CONNECT_TIMEOUT) -> Room:
        room_id = derive(secret).room_id
        existing = self.rooms.get(room_id)
        if existing is not None and not existing.closed:
            if existing.connected:
                logger.debug(f"Room {room_id} already joined")
                return existing
            # Another join is still connecting; share its outcome
            logger.debug(f"Room {room_id} is connecting, waiting for it")
            return await existing.wait_connected(timeout)

        room = Room(self.client, secret, config)
        self.rooms[room_id] = room
        try:
            await room.wait_connected(timeout)
        except (Exception, asyncio.CancelledError):
            logger.warning(f"Could not connect to room {room_id}, discarding it")
            room.leave()
            if self.rooms.get(room_id) is room:
                del self.rooms[room_id]
            raise
        logger.info(f"Joined room {room_id} ({len(self.rooms)} rooms active)")
        return room

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def leave(self, room_id: str) -> bool:
        room = self.rooms.pop(room_id, None)
        if room is None:
            return False
        room.leave()
        return True

    def leave_all(self) -> None:
        for room_id in list(self.rooms):
            self.leave(room_id)


room_hub = RoomHub()


def get_room_hub() -> RoomHub:
    return room_hub
