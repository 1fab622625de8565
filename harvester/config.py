# harvester/config.py
import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_type: str = "postgresql"
    db_username: str = "harvester"
    db_password: str = "harvester"
    db_host: str = "localhost"
    db_name: str = "telegram_harvester"
    # Full SQLAlchemy URL, takes precedence over the db_* parts
    sqlalchemy_url: Optional[str] = None

    api_id: int
    api_hash: str
    phone_number: str
    channel_username: str
    session_name: str = "telegram_harvester_session"
    session_workdir: str = "."
    telegram_password: Optional[str] = None  # two-step verification

    # Polling cadence, in seconds
    polling_initial_interval: float = 5.0
    polling_min_interval: float = 1.0
    polling_max_interval: float = 60.0
    polling_speedup_factor: float = 0.75
    polling_slowdown_factor: float = 1.5
    polling_silence_threshold: float = 300.0
    polling_track_attempts_as_activity: bool = False
    readiness_probe_interval: float = 5.0
    fetch_page_size: int = 100

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.sqlalchemy_url:
            return self.sqlalchemy_url
        return f"{self.db_type}://{self.db_username}:{self.db_password}@{self.db_host}/{self.db_name}"

    @property
    def channel(self) -> str:
        return self.channel_username.lstrip('@')


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # pyrogram is chatty at INFO
    logging.getLogger("pyrogram").setLevel(logging.WARNING)
