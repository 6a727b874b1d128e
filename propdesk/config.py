from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from propdesk.runtime import normalize_phone

# -----------------------------
# .env Loader
# -----------------------------
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None or str(v).strip() == "":
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v.strip() if (v and str(v).strip() != "") else default


def env_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = env_str(key)
    if raw is None:
        return default
    items = tuple(part.strip().lower() for part in raw.split(",") if part.strip())
    return items or default


DEFAULT_EMERGENCY_KEYWORDS = ("flood", "fire", "gas", "water", "emergency")


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    AIRTABLE_API_KEY: Optional[str]
    AIRTABLE_BASE_ID: Optional[str]
    FORCE_IN_MEMORY: bool
    OPENAI_API_KEY: Optional[str]
    OPENAI_MODEL: str
    OPENAI_TRANSCRIBE_MODEL: str
    AI_TIMEOUT_SECONDS: float
    INTAKE_AI_BUDGET_SECONDS: float
    EMERGENCY_KEYWORDS: Tuple[str, ...]
    TWILIO_ACCOUNT_SID: Optional[str]
    TWILIO_AUTH_TOKEN: Optional[str]
    TWILIO_PHONE_NUMBER: Optional[str]
    SENDGRID_API_KEY: Optional[str]
    SENDGRID_FROM_EMAIL: str
    DEFAULT_COUNTRY_CODE: str
    REQUIRE_SIGNATURE_VALIDATION: bool
    PUBLIC_BASE_URL: Optional[str]
    INBOUND_WEBHOOK_TOKEN: Optional[str]
    AUTO_CREATE_PLACEHOLDER_TENANTS: bool
    DEFAULT_PROPERTY_NAME: str
    DEFAULT_PROPERTY_ADDRESS: str
    VOICE_MAX_RECORDING_SECONDS: int

    @property
    def ai_enabled(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    @property
    def sendgrid_enabled(self) -> bool:
        return bool(self.SENDGRID_API_KEY)

    @property
    def airtable_enabled(self) -> bool:
        return bool(self.AIRTABLE_API_KEY and self.AIRTABLE_BASE_ID) and not self.FORCE_IN_MEMORY


@lru_cache(maxsize=1)
def settings() -> Settings:
    country_code = env_str("DEFAULT_COUNTRY_CODE", "1") or "1"
    return Settings(
        AIRTABLE_API_KEY=env_str("AIRTABLE_API_KEY"),
        AIRTABLE_BASE_ID=env_str("AIRTABLE_BASE_ID"),
        FORCE_IN_MEMORY=env_bool("PROPDESK_FORCE_IN_MEMORY"),
        OPENAI_API_KEY=env_str("OPENAI_API_KEY"),
        OPENAI_MODEL=env_str("OPENAI_MODEL", "gpt-4o"),
        OPENAI_TRANSCRIBE_MODEL=env_str("OPENAI_TRANSCRIBE_MODEL", "whisper-1"),
        AI_TIMEOUT_SECONDS=env_float("AI_TIMEOUT_SECONDS", 8.0),
        INTAKE_AI_BUDGET_SECONDS=env_float("INTAKE_AI_BUDGET_SECONDS", 12.0),
        EMERGENCY_KEYWORDS=env_list("EMERGENCY_KEYWORDS", DEFAULT_EMERGENCY_KEYWORDS),
        TWILIO_ACCOUNT_SID=env_str("TWILIO_ACCOUNT_SID"),
        TWILIO_AUTH_TOKEN=env_str("TWILIO_AUTH_TOKEN"),
        TWILIO_PHONE_NUMBER=normalize_phone(env_str("TWILIO_PHONE_NUMBER"), country_code),
        SENDGRID_API_KEY=env_str("SENDGRID_API_KEY"),
        SENDGRID_FROM_EMAIL=env_str("SENDGRID_FROM_EMAIL", "property@example.com"),
        DEFAULT_COUNTRY_CODE=country_code,
        REQUIRE_SIGNATURE_VALIDATION=env_bool("REQUIRE_SIGNATURE_VALIDATION"),
        PUBLIC_BASE_URL=env_str("PUBLIC_BASE_URL"),
        INBOUND_WEBHOOK_TOKEN=env_str("INBOUND_WEBHOOK_TOKEN"),
        AUTO_CREATE_PLACEHOLDER_TENANTS=env_bool("AUTO_CREATE_PLACEHOLDER_TENANTS", True),
        DEFAULT_PROPERTY_NAME=env_str("DEFAULT_PROPERTY_NAME", "Unassigned Property"),
        DEFAULT_PROPERTY_ADDRESS=env_str("DEFAULT_PROPERTY_ADDRESS", "Pending reconciliation"),
        VOICE_MAX_RECORDING_SECONDS=env_int("VOICE_MAX_RECORDING_SECONDS", 60),
    )
