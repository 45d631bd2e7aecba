import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Room defaults, merged under caller supplied config
ROOM_CACHE_SIZE = int(os.getenv("ROOM_CACHE_SIZE", 100))
ROOM_ALLOW_ECHO = os.getenv("ROOM_ALLOW_ECHO", "false").lower() in ("1", "true", "yes")
ROOM_ENCRYPTION = os.getenv("ROOM_ENCRYPTION", "true").lower() in ("1", "true", "yes")
ROOM_EXPIRATION_SECONDS = int(os.getenv("ROOM_EXPIRATION_SECONDS", 60 * 60 * 24))
ROOM_INACTIVE_LIMIT_SECONDS = int(os.getenv("ROOM_INACTIVE_LIMIT_SECONDS", 60 * 60))
ROOM_EVENT_KIND = int(os.getenv("ROOM_EVENT_KIND", 21111))

# Seconds a single blocking pubsub poll may wait before checking for cancellation
RELAY_POLL_TIMEOUT = float(os.getenv("RELAY_POLL_TIMEOUT", 1.0))
# Seconds the gateway waits for end-of-stored-events when joining a room
ROOM_CONNECT_TIMEOUT = float(os.getenv("ROOM_CONNECT_TIMEOUT", 10.0))
