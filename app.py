from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from room import RoomNotConnectedError
from room_hub import RoomHub, get_room_hub, room_hub
from listeners import CONNECTED, ERROR, LEAVE, WILDCARD
import json
import asyncio
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down, leaving all rooms")
    room_hub.leave_all()


app = FastAPI(lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


def to_frame(event_name: str, *args) -> dict:
    """Shape one room dispatch as a JSON-serializable WebSocket frame."""
    if event_name == CONNECTED:
        return {"eventName": event_name}
    if event_name == ERROR:
        return {"eventName": event_name, "error": str(args[0]) if args else None}
    if event_name == LEAVE:
        return {"eventName": event_name, "roomId": args[0] if args else None}
    payload = args[0] if args else None
    envelope = args[1] if len(args) > 1 else None
    return {
        "eventName": event_name,
        "payload": payload,
        "event": envelope.model_dump() if envelope is not None else None,
    }


@app.websocket("/rooms/{room_id}/ws")
async def websocket_endpoint(room_id: str, websocket: WebSocket, hub: RoomHub = Depends(get_room_hub)):
    """WebSocket bridge to a joined room.

    Every event dispatched in the room is sent as
    {"eventName", "payload", "event"}; text frames of the form
    {"eventName", "payload", "tags"?} are published into the room.
    """
    logger.info(f"WebSocket connection attempt for room: {room_id}")

    room = hub.get(room_id)
    if room is None:
        logger.info(f"WebSocket connection rejected: Room {room_id} not joined")
        await websocket.close(code=1008, reason="Room not found")
        return

    await websocket.accept()
    logger.info(f"WebSocket connection accepted for room: {room_id}")

    outbox: asyncio.Queue = asyncio.Queue()

    def forward(event_name, *args):
        outbox.put_nowait(to_frame(event_name, *args))

    async def sender():
        while True:
            frame = await outbox.get()
            await websocket.send_text(json.dumps(frame))

    room.on(WILDCARD, forward)
    send_task = asyncio.create_task(sender())

    message_count = 0
    try:
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} for room {room_id}")

            try:
                message = json.loads(data)
                event_name = message["eventName"]
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.debug(f"Ignoring malformed WebSocket frame for room {room_id}: {e}")
                await outbox.put({"eventName": ERROR, "error": "Expected JSON with an eventName"})
                continue

            try:
                await room.publish(event_name, message.get("payload"), {"tags": message.get("tags") or []})
            except RoomNotConnectedError:
                await outbox.put({"eventName": ERROR, "error": "Room is not connected"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for room {room_id}")
    except Exception as e:
        logger.error(f"WebSocket error for room {room_id}: {e}", exc_info=True)
    finally:
        room.remove(WILDCARD, forward)
        send_task.cancel()
        try:
            await send_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"WebSocket sender for room {room_id} ended with error: {e}")
