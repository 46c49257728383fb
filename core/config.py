"""
Settings loading: defaults, then config.yaml, then environment.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class HttpSettings(BaseModel):
    timeout: float = 30.0
    max_retries: int = 3
    user_agent: str = "LearningPlatform/1.0 (Learning Bot)"


class Settings(BaseModel):
    database_path: str = "db/learning.db"
    cron_secret: Optional[str] = None
    notify_webhook_url: Optional[str] = None
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    batch_size: int = 50
    lease_seconds: int = 900
    retention_days: int = 7
    scrape_pause_s: float = 0.3

    # Wall-clock ceilings per entry point, in seconds
    run_timeouts: Dict[str, float] = Field(default_factory=lambda: {
        "process_queue": 120.0,
        "health_check": 60.0,
        "self_heal": 120.0,
        "scrape": 300.0,
        "daily_report": 60.0,
    })

    # Cron expressions for the optional in-process trigger owner
    schedules: Dict[str, str] = Field(default_factory=dict)

    http: HttpSettings = Field(default_factory=HttpSettings)

    def timeout_for(self, run: str) -> float:
        return self.run_timeouts.get(run, 60.0)


_ENV_MAP = {
    "DATABASE_PATH": "database_path",
    "CRON_SECRET": "cron_secret",
    "NOTIFY_WEBHOOK_URL": "notify_webhook_url",
    "LOG_LEVEL": "log_level",
    "HOST": "host",
    "PORT": "port",
    "BATCH_SIZE": "batch_size",
}


def load_settings(path: Optional[str] = None) -> Settings:
    """Build Settings from config.yaml (if any) overlaid with environment variables."""
    load_dotenv()

    config_path = Path(path or os.getenv("LEARNING_CONFIG", "config.yaml"))
    data: Dict[str, Any] = {}
    if config_path.exists():
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"Config file not found: {config_path}, using defaults")

    for env_name, field in _ENV_MAP.items():
        value = os.getenv(env_name)
        if value:
            data[field] = value

    return Settings.model_validate(data)
