# src/taskminder/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole process, built once at import.
- No secrets required at import time (providers fall back to offline channels).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKMINDER"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths ----
    data_dir: Path
    tasks_db_path: Path
    triggers_db_path: Path

    # ---- Time ----
    timezone: str
    default_lead_minutes: int

    # ---- Trigger worker ----
    worker_interval_seconds: float
    worker_batch_limit: int
    worker_concurrency: int
    claim_ttl_seconds: float
    channel_timeout_seconds: float

    # ---- Recurrence ----
    scan_page_size: int
    recurring_dedupe: bool

    # ---- Email (SMTP) ----
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_sender: str
    smtp_starttls: bool

    # ---- SMS gateway ----
    sms_gateway_url: str
    sms_api_key: str
    sms_sender_id: str

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_sender)

    @property
    def sms_configured(self) -> bool:
        return bool(self.sms_gateway_url)

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskminder"))

        return Settings(
            app_name=_env(_k("APP_NAME"), "taskminder"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            data_dir=data_dir,
            tasks_db_path=_env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3"),
            triggers_db_path=_env_path(_k("TRIGGERS_DB_PATH"), data_dir / "triggers.sqlite3"),
            timezone=_env(_k("TIMEZONE"), "UTC").strip() or "UTC",
            default_lead_minutes=max(0, _env_int(_k("DEFAULT_LEAD_MINUTES"), 30)),
            worker_interval_seconds=_env_float(_k("WORKER_INTERVAL_SECONDS"), 15.0),
            worker_batch_limit=_env_int(_k("WORKER_BATCH_LIMIT"), 32),
            worker_concurrency=max(1, _env_int(_k("WORKER_CONCURRENCY"), 4)),
            claim_ttl_seconds=_env_float(_k("CLAIM_TTL_SECONDS"), 300.0),
            channel_timeout_seconds=_env_float(_k("CHANNEL_TIMEOUT_SECONDS"), 10.0),
            scan_page_size=max(1, _env_int(_k("SCAN_PAGE_SIZE"), 100)),
            recurring_dedupe=_env_bool(_k("RECURRING_DEDUPE"), True),
            smtp_host=_env(_k("SMTP_HOST"), "").strip(),
            smtp_port=_env_int(_k("SMTP_PORT"), 587),
            smtp_user=_env(_k("SMTP_USER"), "").strip(),
            smtp_password=_env(_k("SMTP_PASSWORD"), ""),
            smtp_sender=_env(_k("SMTP_SENDER"), "").strip(),
            smtp_starttls=_env_bool(_k("SMTP_STARTTLS"), True),
            sms_gateway_url=_env(_k("SMS_GATEWAY_URL"), "").strip(),
            sms_api_key=_env(_k("SMS_API_KEY"), ""),
            sms_sender_id=_env(_k("SMS_SENDER_ID"), "taskminder").strip(),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
