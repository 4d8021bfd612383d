from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Local Chat"
    API_V1_PREFIX: str = "/api/v1"

    # ===========================================
    # Environment Mode
    # ===========================================
    ENV: Literal["development", "production"] = "development"

    # ===========================================
    # Database (used by the backend API and the local gateway)
    # ===========================================
    DATABASE_URL: str = "sqlite:///./data/chat.db"

    # ===========================================
    # Persistence Gateway
    # ===========================================
    # "local": talk to DATABASE_URL directly
    # "remote": talk to a running backend over HTTP
    PERSISTENCE_BACKEND: Literal["local", "remote"] = "local"
    REMOTE_API_BASE: str = "http://localhost:3001/api/v1"
    REMOTE_TIMEOUT: int = 15  # seconds

    # ===========================================
    # LLM Provider Configuration
    # ===========================================
    # Provider: "ollama" or "vllm"
    LLM_PROVIDER: Literal["ollama", "vllm"] = "ollama"

    # LLM API (OpenAI-compatible for vllm, native for ollama)
    LLM_API_BASE: str = "http://localhost:11434"
    LLM_MODEL: str = "gemma3:4b"
    LLM_TIMEOUT: int = 120  # seconds
    LLM_MAX_TOKENS: int = 8192  # Maximum tokens to generate in response
    LLM_TEMPERATURE: float = 0.7

    # Title generation uses a short, low-temperature completion
    TITLE_TEMPERATURE: float = 0.2
    TITLE_MAX_CHARS: int = 60

    # ===========================================
    # Chat Settings
    # ===========================================
    # Session preview length before the ellipsis marker is appended
    PREVIEW_MAX_CHARS: int = 60

    # Where the user-facing settings (theme, language, ...) are stored
    USER_SETTINGS_PATH: str = "data/user_settings.json"

    # Comma-separated list; empty means localhost defaults
    CORS_ORIGINS: str = ""

    @field_validator("LLM_API_BASE", "REMOTE_API_BASE")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoints are joined with '/path', so drop any trailing slash."""
        return v.rstrip("/")

    @property
    def cors_origins(self) -> List[str]:
        if self.CORS_ORIGINS:
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    class Config:
        env_file = ".env"


settings = Settings()
