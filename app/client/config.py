"""
Client configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Exam client settings loaded from EXAM_CLIENT_* environment variables"""

    API_BASE_URL: str = "http://127.0.0.1:8000/api"
    REQUEST_TIMEOUT: float = 10.0

    # Countdown display refresh and server reconciliation (seconds)
    TICK_INTERVAL: float = 1.0
    RECONCILE_INTERVAL: float = 15.0

    # Local continuity cache file
    STATE_FILE: str = ".exam_client_state.json"

    class Config:
        env_prefix = "EXAM_CLIENT_"
        env_file = ".env"
        extra = "ignore"


# Global settings instance
client_settings = ClientSettings()
