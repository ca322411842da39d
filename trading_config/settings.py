"""
Process settings for the grid bot launcher.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

from helpers.event_notifier import ALERT_LEVELS


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Chain
    rpc_url: str = "https://mainnet.base.org"
    chain: str = "base"

    # Swap quotes
    zerox_api_key: Optional[str] = None
    zerox_api_url: str = "https://api.0x.org"
    zerox_slippage_bps: int = 100

    # Runtime
    storage_path: str = "grid_bots.json"
    heartbeat_ms: int = 1000
    log_level: str = "INFO"
    dry_run: bool = False

    # Notifications
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    notification_alert_level: str = "all"

    @field_validator("chain", "notification_alert_level", mode="before")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("notification_alert_level")
    @classmethod
    def _known_alert_level(cls, value: str) -> str:
        if value not in ALERT_LEVELS:
            raise ValueError(f"notification_alert_level must be one of {', '.join(ALERT_LEVELS)}")
        return value

    @field_validator("heartbeat_ms")
    @classmethod
    def _positive_heartbeat(cls, value: int) -> int:
        if value < 50:
            raise ValueError("heartbeat_ms must be at least 50")
        return value

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

