import logging
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    CLUSTERING_TEMPERATURE: float = 0.2
    CLUSTERING_MAX_TOKENS: int = 4096
    CLUSTERING_SAMPLE_ROWS: int = 1000
    CLUSTERING_PROMPT_ROWS: int = 20
    MAX_UPLOAD_MB: int = 100
    PREVIEW_ROWS: int = 100
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def configure_logging(level: str | None = None) -> None:
    """Install the root log handler once, at the level from settings."""
    resolved = level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
    logging.basicConfig(
        level=getattr(logging, resolved.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
