# counselor/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    storage_url: str = Field("sqlite:///./counselor.db", validation_alias="STORAGE_URL")

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    # Server-side default for /api/chat when the caller sends no model.
    openai_model: str = Field("gpt-5", validation_alias="OPENAI_MODEL")
    # Model the chat session asks for on every completion.
    chat_model: str = Field("gpt-4.1-mini", validation_alias="CHAT_MODEL")

    realtime_model: str = Field(
        "gpt-4o-mini-realtime-preview", validation_alias="OPENAI_REALTIME_MODEL"
    )
    realtime_voice: str = Field("alloy", validation_alias="OPENAI_VOICE")
    transcribe_model: str = Field(
        "gpt-4o-mini-transcribe", validation_alias="OPENAI_STT_MODEL"
    )
    realtime_base_url: str = Field(
        "https://api.openai.com/v1/realtime",
        validation_alias="OPENAI_REALTIME_BASE_URL",
    )

    api_base_url: str = Field("http://localhost:8000", validation_alias="API_BASE_URL")
    request_timeout: float = Field(60.0, validation_alias="REQUEST_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        frozen=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
