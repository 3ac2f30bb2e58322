"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017/?replicaSet=rs0"
    MONGO_DB: str = "tablekick"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Match rules
    WIN_SCORE: int = 10
    WIN_MARGIN: int = 2
    LOBBY_EXPIRY_SECONDS: int = 30
    MATCH_HISTORY_LIMIT: int = 20
    LEADERBOARD_LIMIT: int = 50

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_SETTLEMENT_ENABLED: bool = True
    EVENT_HANDLER_SUBSCRIPTIONS_ENABLED: bool = True

    # Change stream on the matches collection (requires a replica set)
    CHANGE_STREAM_ENABLED: bool = True
    CHANGE_STREAM_RETRY_SECONDS: float = 2.0

    # Safety net for change-stream deliveries that never arrived
    SETTLEMENT_RECONCILE_ENABLED: bool = True
    SETTLEMENT_RECONCILE_MINUTES: int = 5
    SETTLEMENT_RECONCILE_BATCH: int = 100

    model_config = {
        "env_file": (str(_ROOT_ENV_FILE), str(_BACKEND_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
