import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", 7))

# Empty means the internal routes are not token protected (local development)
INTERNAL_BROADCAST_TOKEN = os.getenv("INTERNAL_BROADCAST_TOKEN", "")

ROOM_IDLE_GRACE_SECONDS = float(os.getenv("ROOM_IDLE_GRACE_SECONDS", 300))
ROOM_SWEEP_INTERVAL_SECONDS = float(os.getenv("ROOM_SWEEP_INTERVAL_SECONDS", 60))
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))

RECONNECT_INITIAL_DELAY = float(os.getenv("RECONNECT_INITIAL_DELAY", 1.0))
RECONNECT_MAX_DELAY = float(os.getenv("RECONNECT_MAX_DELAY", 30.0))
RECONNECT_MULTIPLIER = float(os.getenv("RECONNECT_MULTIPLIER", 2))
TYPING_TIMEOUT_SECONDS = float(os.getenv("TYPING_TIMEOUT_SECONDS", 5.0))

OFFLINE_QUEUE_PATH = os.getenv(
    "OFFLINE_QUEUE_PATH", os.path.join(os.path.expanduser("~"), ".duochat", "offline-queue.json")
)

# Websocket close codes used when a handshake is rejected
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011
