from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SweeperSettings(BaseModel):
    interval_seconds: float = Field(default=15.0, gt=0)
    restriction_ttl_hours: float = Field(default=24.0, gt=0)
    message_retention_hours: float = Field(default=48.0, gt=0)


class ModerationSettings(BaseModel):
    soft_ban_seconds: int = Field(default=45, ge=30, description="Telegram treats bans shorter than 30s as permanent.")
    restriction_hours: float = Field(default=24.0, gt=0)
    admission_wait_seconds: float = Field(default=5.0, ge=0)


class ReputationSettings(BaseModel):
    enabled: bool = True
    base_url: str = "https://api.cas.chat"
    timeout_seconds: float = 5.0


class ChallengeSettings(BaseModel):
    image_width: int = Field(default=240, ge=60)
    image_height: int = Field(default=90, ge=30)
    image_length: int = Field(default=4, ge=3, le=8)


class StorageSettings(BaseModel):
    sqlite_path: str = "gatekeeper.db"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    use_json: bool = Field(default=False, description="Use JSON format instead of colored output")


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    telegram_token: str = Field(..., description="Telegram bot token.")
    sweeper: SweeperSettings = SweeperSettings()
    moderation: ModerationSettings = ModerationSettings()
    reputation: ReputationSettings = ReputationSettings()
    challenges: ChallengeSettings = ChallengeSettings()
    storage: StorageSettings = StorageSettings()
    logging: LoggingSettings = LoggingSettings()
