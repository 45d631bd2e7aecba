import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from typing import Optional

from logging_config import get_logger
from room import RoomNotConnectedError
from room_hub import RoomHub, get_room_hub
from schemas.rooms import (
    CachedEvent,
    JoinRoomRequest,
    JoinRoomResponse,
    PublishRequest,
    PublishResponse,
    RoomDetailsResponse,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def _require_room(hub: RoomHub, room_id: str):
    room = hub.get(room_id)
    if room is None:
        logger.warning(f"Room {room_id} not joined by this gateway")
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@rooms_router.post("/join", response_model=JoinRoomResponse)
async def join_room(join_request: JoinRoomRequest, request: Request, hub: RoomHub = Depends(get_room_hub)):
    # POST /rooms/join Body: { "secret": "shared-room-secret", "config": { "allowEcho": true, ... } }
    # Response 200: { "room_id": "<sha256 hex>", "ws_url": "ws://.../rooms/<id>/ws", "connected": true }
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Join room request from {client_host}")

    try:
        room = await hub.join(join_request.secret, join_request.config)
    except ValidationError as e:
        logger.warning(f"Join room failed: invalid config: {e}")
        raise HTTPException(status_code=422, detail="Invalid room config")
    except asyncio.TimeoutError:
        logger.warning("Join room failed: timed out waiting for stored events")
        raise HTTPException(status_code=504, detail="Timed out connecting to room")
    except Exception as e:
        logger.error(f"Error joining room: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="Failed to join room")

    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    ws_url = f"{ws_base}/rooms/{room.id}/ws"

    logger.info(f"Room {room.id} joined successfully from {client_host}")
    return JoinRoomResponse(room_id=room.id, ws_url=ws_url, connected=room.connected)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(
    room_id: str,
    recent: Optional[int] = Query(None, ge=0, description="Include up to this many cached events"),
    hub: RoomHub = Depends(get_room_hub),
):
    """
    Get room details from this gateway's view of the room.

    Returns:
    - room_id: Room identifier (digest of the room key)
    - connected: Whether stored events finished replaying
    - members: Recently active author pubkeys
    - cached_events_count: Events held in the recency cache
    - recent_events: Latest cached events, when `recent` is given
    """
    room = _require_room(hub, room_id)
    members = room.members

    recent_events = None
    if recent is not None:
        recent_events = [
            CachedEvent(event_name=e.event_name, payload=e.payload, event=e.envelope)
            for e in room.cache.latest(recent)
        ]

    logger.info(f"Room details retrieved for {room_id}: {len(members)} members, {len(room.cache)} cached events")
    return RoomDetailsResponse(
        room_id=room.id,
        connected=room.connected,
        members=members,
        member_count=len(members),
        cached_events_count=len(room.cache),
        cache_size=room.config.cache_size,
        encryption=room.config.encryption,
        kind=room.config.kind,
        recent_events=recent_events,
    )


@rooms_router.post("/{room_id}/publish", response_model=PublishResponse)
async def publish_event(room_id: str, publish_request: PublishRequest, hub: RoomHub = Depends(get_room_hub)):
    room = _require_room(hub, room_id)

    try:
        event = await room.publish(
            publish_request.event_name,
            publish_request.payload,
            {"tags": publish_request.tags},
        )
    except RoomNotConnectedError:
        logger.warning(f"Publish failed: room {room_id} is not connected")
        raise HTTPException(status_code=409, detail="Room is not connected")

    if event is None:
        raise HTTPException(status_code=502, detail="Failed to publish event")

    logger.info(f"Published '{publish_request.event_name}' to room {room_id}")
    return PublishResponse(room_id=room_id, event=event)


@rooms_router.post("/{room_id}/leave")
async def leave_room(room_id: str, hub: RoomHub = Depends(get_room_hub)):
    # POST /rooms/{room_id}/leave
    # - The subscription is cancelled and the room is forgotten by this gateway.
    # - Other participants are unaffected; the room lives on while anyone knows the secret.
    if not hub.leave(room_id):
        logger.warning(f"Leave room failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    logger.info(f"Room {room_id} left")
    return {"message": "Left room successfully"}
