from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv


load_dotenv()


class Settings:
    """Application settings loaded from environment variables.

    Keep backend, session and logging config centralized here.
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self.ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        self.ollama_model: str = os.getenv("OLLAMA_MODEL", "deepseek-r1:1.5b")
        self.ollama_timeout: float = float(os.getenv("OLLAMA_TIMEOUT", "120"))
        self.ollama_max_retries: int = int(os.getenv("OLLAMA_MAX_RETRIES", "0"))
        self.ollama_retry_backoff: float = float(os.getenv("OLLAMA_RETRY_BACKOFF", "0.5"))

        self.session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "session_id")
        self.session_cookie_max_age: int = int(os.getenv("SESSION_COOKIE_MAX_AGE", "86400"))
        self.session_ttl: float = float(os.getenv("SESSION_TTL", "86400"))
        self.session_sweep_interval: float = float(os.getenv("SESSION_SWEEP_INTERVAL", "300"))

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
