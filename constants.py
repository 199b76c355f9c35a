import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", 8000))

# Seconds a pub/sub listener blocks waiting for the next change event
SUBSCRIPTION_POLL_TIMEOUT = float(os.getenv("SUBSCRIPTION_POLL_TIMEOUT", 1.0))

TABLES = ("profiles", "rooms", "messages", "games")

# Column used to order rows of each table
CREATED_COLUMNS = {
    "profiles": "joined_at",
    "rooms": "created_at",
    "messages": "created_at",
    "games": "started_at",
}

# Foreign keys that get their own sorted set so filtered selects skip the full scan
INDEXED_COLUMNS = {
    "messages": ("room_id",),
}
