import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))

from constants import BROADCAST_BACKEND, HOST, PORT
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    reload = os.getenv("RELOAD", "false").lower() == "true"
    logger.info(f"Starting DevRoom sync server on {HOST}:{PORT} (broadcast via {BROADCAST_BACKEND})")
    uvicorn.run("app:app", host=HOST, port=PORT, reload=reload)
