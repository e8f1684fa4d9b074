from __future__ import annotations

from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5500,http://localhost:5500",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./persona_chat.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    llm_provider: str = Field(default="mock", alias="LLM_PROVIDER")
    llm_model: str = Field(default="mock-1", alias="LLM_MODEL")
    llm_base_url: Optional[str] = Field(default=None, alias="LLM_BASE_URL")
    llm_api_key: Optional[str] = Field(default=None, alias="LLM_API_KEY")
    llm_timeout_sec: float = Field(default=90, alias="LLM_TIMEOUT_SEC")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    first_token_timeout_sec: float = Field(default=5.0, alias="FIRST_TOKEN_TIMEOUT_SEC")
    history_take: int = Field(default=10, alias="HISTORY_TAKE")
    memory_take: int = Field(default=1, alias="MEMORY_TAKE")
    memory_enabled: bool = Field(default=True, alias="MEMORY_ENABLED")
    max_message_len: int = Field(default=2000, alias="MAX_MESSAGE_LEN")

    default_room_id: str = Field(default="default", alias="DEFAULT_ROOM_ID")
    default_room_name: str = Field(default="Lounge", alias="DEFAULT_ROOM_NAME")
    default_room_description: str = Field(
        default="A quiet group chat for everyday conversation.",
        alias="DEFAULT_ROOM_DESCRIPTION",
    )
    bot_name: str = Field(default="Echo", alias="BOT_NAME")
    bot_profile: str = Field(
        default="A warm, curious companion who keeps answers short and friendly.",
        alias="BOT_PROFILE",
    )
    master_name: str = Field(default="User", alias="MASTER_NAME")
    master_profile: str = Field(default="", alias="MASTER_PROFILE")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    def resolved_llm_base_url(self) -> Optional[str]:
        """Return the generation base URL, falling back to the provider default."""

        if self.llm_base_url:
            return self.llm_base_url
        provider = self.llm_provider.strip().lower()
        if provider == "openai":
            return self.openai_base_url
        if provider == "ollama":
            return self.ollama_base_url
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
