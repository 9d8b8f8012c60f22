# backend/practice/config.py
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional
from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

logger = logging.getLogger(__name__)

ASYNC_DATABASE_URL = os.getenv("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./practice.db")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-insecure-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))

# cron endpoints are open when this is empty
CRON_SECRET = os.getenv("CRON_SECRET", "")

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.ionos.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_FROM = os.getenv("SMTP_FROM", "") or SMTP_USER
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Practice Reminders")

AUDIO_STORAGE_DIR = os.getenv("AUDIO_STORAGE_DIR", "static/audio")

OPENAI_TRANSCRIBE_MODEL = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "120"))

KAFKA_ENABLED = os.getenv("KAFKA_ENABLED", "true").lower() == "true"
KAFKA_BOOTSTRAP = os.getenv("KAFKA_BOOTSTRAP", "redpanda:9092")
KAFKA_TOPIC_TRANSCRIPTIONS = os.getenv("KAFKA_TOPIC_TRANSCRIPTIONS", "recordings.transcribe.requests")
KAFKA_GROUP_TRANSCRIBERS = os.getenv("KAFKA_GROUP_TRANSCRIBERS", "transcription-workers")

CALENDLY_WEBHOOK_SIGNING_KEY = os.getenv("CALENDLY_WEBHOOK_SIGNING_KEY", "")
# practitioner that owns clients created from Calendly bookings
CALENDLY_USER_ID = int(os.getenv("CALENDLY_USER_ID")) if os.getenv("CALENDLY_USER_ID") else None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]

SETTINGS_ROW_ID = "default"

DEFAULT_PRACTICE_SETTINGS: Dict[str, Any] = {
    "timezone": "UTC",
    "reminderHoursBefore": 24,
    "appointmentTypes": [
        {"name": "Initial Consultation", "duration": 60, "fee": 80, "enabled": True},
        {"name": "Follow-up Session", "duration": 60, "fee": 80, "enabled": True},
        {"name": "Therapy Session", "duration": 60, "fee": 80, "enabled": True},
        {"name": "Couples Therapy Session", "duration": 60, "fee": 100, "enabled": True},
        {"name": "Family Therapy", "duration": 60, "fee": 80, "enabled": True},
        {"name": "Discovery Session", "duration": 30, "fee": 0, "enabled": True},
    ],
    "defaultDuration": 60,
    "defaultFee": 80,
    "currency": "EUR",
}


def _lead_hours(value: Any) -> float:
    if value is None or value == "":
        return 24
    try:
        hours = float(value)
    except (TypeError, ValueError):
        logger.warning("[settings] invalid reminderHoursBefore %r, using 24", value)
        return 24
    if not 0 < hours < 24 * 365:
        logger.warning("[settings] reminderHoursBefore %r out of range, using 24", value)
        return 24
    return hours


@dataclass(frozen=True)
class ReminderConfig:
    """Per-invocation reminder settings read from the practice settings row."""

    timezone: str = "UTC"
    reminder_hours_before: float = 24
    email_template: Optional[Dict[str, str]] = None
    company_logo: Optional[str] = None

    @classmethod
    def from_settings(cls, config: Optional[Dict[str, Any]]) -> "ReminderConfig":
        config = config if isinstance(config, dict) else {}
        template = config.get("reminderEmailTemplate")
        timezone = config.get("timezone")
        return cls(
            timezone=timezone if isinstance(timezone, str) and timezone else "UTC",
            reminder_hours_before=_lead_hours(config.get("reminderHoursBefore")),
            email_template=template if isinstance(template, dict) else None,
            company_logo=config.get("companyLogo") or None,
        )
