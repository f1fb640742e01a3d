import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# "redis" fans out through pub/sub so several instances can share rooms,
# "local" keeps fan-out inside this process
BROADCAST_BACKEND = os.getenv("BROADCAST_BACKEND", "redis")
SUBSCRIBE_TIMEOUT = float(os.getenv("SUBSCRIBE_TIMEOUT", 1.0))
# Backoff for re-subscribing after a room listener loses its pub/sub connection
RESUBSCRIBE_DELAY = float(os.getenv("RESUBSCRIBE_DELAY", 0.5))
RESUBSCRIBE_MAX_DELAY = float(os.getenv("RESUBSCRIBE_MAX_DELAY", 10.0))

EXECUTION_URL = os.getenv("EXECUTION_URL", "https://emkc.org/api/v2/piston/execute")
EXECUTION_TIMEOUT = float(os.getenv("EXECUTION_TIMEOUT", 5.0))

DEFAULT_CODE = "// start code here"
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "javascript")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 5000))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
