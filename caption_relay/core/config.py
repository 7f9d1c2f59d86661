import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Supabase (record store)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_TABLE: str = "transcription_requests"
    PERSISTENCE_TIMEOUT: float = 10.0

    # Fireflies realtime feed
    FIREFLIES_API_KEY: str = ""
    FIREFLIES_URL: str = "wss://api.fireflies.ai"
    FIREFLIES_SOCKET_PATH: str = "/ws/realtime"
    HANDSHAKE_TIMEOUT: float = 20.0
    RECONNECT_ATTEMPTS: int = 5
    RECONNECT_DELAY: float = 1.0

    # Session timing (seconds)
    FLUSH_INTERVAL: float = 15.0
    INACTIVITY_TIMEOUT: float = 10 * 60.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # General
    APP_NAME: str = "Caption Relay"
    APP_VERSION: str = "1.0.0"
    ENV: str = os.getenv("ENV", "development")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def supabase_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY or self.SUPABASE_ANON_KEY

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Ensure .env is loaded once
    load_dotenv(override=False)
    return Settings()
