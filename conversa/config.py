from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_UPLOAD_TYPES = [
    "image/jpeg",
    "image/png",
    "image/jpg",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/zip",
]


class Settings(BaseSettings):
    """Runtime configuration, read from the environment or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Mongo
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "conversa"

    # Realtime fanout; empty disables Redis and falls back to in-process delivery
    REDIS_URL: Optional[str] = None

    # Inference
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    BOT_SYSTEM_PROMPT: str = "You are a helpful AI chatbot."
    BOT_MAX_OUTPUT_TOKENS: int = 2000
    BOT_HISTORY_LIMIT: int = 20
    BOT_FALLBACK_REPLY: str = "AI is busy right now, please try again."
    BOT_EMAIL_MARKER: str = "bot"

    # Object storage
    AWS_ACCESS_KEY: Optional[str] = None
    AWS_SECRET: Optional[str] = None
    AWS_REGION: str = "ap-south-1"
    AWS_BUCKET_NAME: str = "conversa-uploads"
    UPLOAD_KEY_PREFIX: str = "conversa"
    UPLOAD_MAX_BYTES: int = 5 * 1024 * 1024
    UPLOAD_EXPIRES_SECONDS: int = 15 * 60
    UPLOAD_ALLOWED_TYPES: List[str] = DEFAULT_ALLOWED_UPLOAD_TYPES

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "[%(levelname)s] %(asctime)s [%(name)s] %(filename)s:%(lineno)d: %(message)s"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
