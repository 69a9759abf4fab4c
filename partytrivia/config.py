from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Party Trivia"
    database_url: str = "sqlite://trivia.db"

    # Answer countdown
    answer_seconds: int = 20
    tick_seconds: float = 1.0

    room_code_length: int = 6
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    seed_questions: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_prefix="TRIVIA_")


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
