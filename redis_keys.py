REDIS_EVENTS_KEY = "room:events:{slug}" # room id - sorted set of signed events scored by created_at
REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room id - pub/sub channel name

# **Example `room:events:{id}` member**
# - JSON of a signed event: id, pubkey, created_at, kind, tags, content, sig
# - `tags` always carries ["h", "{id}"] and usually ["expiration", "{unix seconds}"]
# - key TTL follows the latest expiration tag stored under it
