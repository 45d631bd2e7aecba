from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Callable, Dict, List, Optional

from constants import (
    ROOM_ALLOW_ECHO,
    ROOM_CACHE_SIZE,
    ROOM_ENCRYPTION,
    ROOM_EVENT_KIND,
    ROOM_EXPIRATION_SECONDS,
    ROOM_INACTIVE_LIMIT_SECONDS,
)
from utils import now


def _default_filter() -> Dict[str, Any]:
    return {"since": now()}


class RoomConfig(BaseModel):
    # Accepts cacheSize / cache_size alike
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cache_size: int = Field(default=ROOM_CACHE_SIZE, gt=0)
    allow_echo: bool = ROOM_ALLOW_ECHO
    encryption: bool = ROOM_ENCRYPTION
    expiration: int = ROOM_EXPIRATION_SECONDS
    filter: Dict[str, Any] = Field(default_factory=_default_filter)
    inactive_limit: Optional[int] = ROOM_INACTIVE_LIMIT_SECONDS
    kind: int = ROOM_EVENT_KIND
    tags: List[List[str]] = Field(default_factory=list)
    validator: Optional[Callable[[str, Any], Any]] = Field(default=None, exclude=True)


class Envelope(BaseModel):
    """Decrypted content of a room event."""
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field(alias="eventName")
    payload: Any = None


class Event(BaseModel):
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: List[List[str]] = Field(default_factory=list)
    content: str
    sig: str


class JoinRoomRequest(BaseModel):
    secret: str
    config: Optional[Dict[str, Any]] = None

class JoinRoomResponse(BaseModel):
    room_id: str
    ws_url: str
    connected: bool

class PublishRequest(BaseModel):
    event_name: str
    payload: Any = None
    tags: List[List[str]] = Field(default_factory=list)

class PublishResponse(BaseModel):
    room_id: str
    event: Event

class CachedEvent(BaseModel):
    event_name: str
    payload: Any = None
    event: Event

class RoomDetailsResponse(BaseModel):
    room_id: str
    connected: bool
    members: List[str]
    member_count: int
    cached_events_count: int
    cache_size: int
    encryption: bool
    kind: int
    recent_events: Optional[List[CachedEvent]] = None
