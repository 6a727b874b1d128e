"""
Property Intake Runtime Core
----------------------------
Centralized utilities for logging, timing, timezone handling,
phone normalization, and the per-intake AI deadline.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, TypeVar


# Internal state flags
_LOGGING_CONFIGURED = False
_CORE_ENV_LOGGED = False
_DIGIT_PATTERN = re.compile(r"\d+")
E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")
T = TypeVar("T")


# ────────────────────────────────────────────────
# ENV MASKING + LOGGING CONFIG
# ────────────────────────────────────────────────
def mask_env_value(value: Optional[str]) -> str:
    """Mask sensitive env values (API keys, tokens, etc.)."""
    if not value:
        return "<missing>"
    trimmed = value.strip()
    if len(trimmed) <= 4:
        return "*" * len(trimmed)
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def _normalize_level(value: int | str | None) -> int:
    """Normalize string or int log level."""
    if value is None:
        env_level = os.getenv("PROPDESK_LOG_LEVEL")
        if env_level:
            value = env_level
        else:
            return logging.INFO
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: int | str | None = None) -> None:
    """Initialize root logging configuration once."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=_normalize_level(level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _LOGGING_CONFIGURED = True


def get_logger(name: str = "propdesk") -> logging.Logger:
    """Return module-specific logger."""
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)


def log_core_env() -> None:
    """Logs masked vendor credentials once, for observability."""
    global _CORE_ENV_LOGGED
    if _CORE_ENV_LOGGED:
        return
    logger = get_logger("env")
    logger.info(
        "Core env summary:\n"
        "• Airtable Key=%s | Base=%s\n"
        "• OpenAI Key=%s | Twilio SID=%s | Twilio From=%s\n"
        "• SendGrid Key=%s | SignatureValidation=%s",
        mask_env_value(os.getenv("AIRTABLE_API_KEY")),
        os.getenv("AIRTABLE_BASE_ID") or "<missing>",
        mask_env_value(os.getenv("OPENAI_API_KEY")),
        mask_env_value(os.getenv("TWILIO_ACCOUNT_SID")),
        os.getenv("TWILIO_PHONE_NUMBER") or "<missing>",
        mask_env_value(os.getenv("SENDGRID_API_KEY")),
        os.getenv("REQUIRE_SIGNATURE_VALIDATION", "false"),
    )
    _CORE_ENV_LOGGED = True


# ────────────────────────────────────────────────
# TIME UTILITIES
# ────────────────────────────────────────────────
def utc_now() -> datetime:
    """Return UTC datetime (always timezone-aware)."""
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Return ISO8601 UTC timestamp with microseconds (keeps sort order stable)."""
    return utc_now().isoformat(timespec="microseconds")


def parse_iso(value: str | datetime | None) -> Optional[datetime]:
    """Parse an ISO8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def epoch_millis() -> int:
    return int(time.time() * 1000)


# ────────────────────────────────────────────────
# PHONE UTILITIES
# ────────────────────────────────────────────────
def only_digits(value: str | None) -> str:
    """Extract all digits from a string."""
    if value is None:
        return ""
    return "".join(_DIGIT_PATTERN.findall(str(value)))


def normalize_phone(value: str | None, default_country_code: str = "1") -> Optional[str]:
    """
    Normalize a phone number to ``+<digits>``.

    Non-digits are stripped and a ``+`` is prefixed. A value written with a
    leading ``+`` already carries its country code. Otherwise exactly ten
    digits are treated as a national number and get ``default_country_code``
    prepended. This is a heuristic for a single-country deployment, not a
    numbering-plan parser.
    """
    if not value:
        return None
    digits = only_digits(value)
    if not digits:
        return None
    international = str(value).strip().startswith("+")
    if len(digits) == 10 and not international:
        digits = f"{only_digits(default_country_code)}{digits}"
    return f"+{digits}"


def is_e164(value: str | None) -> bool:
    return bool(value) and bool(E164_RE.fullmatch(str(value)))


# ────────────────────────────────────────────────
# DEADLINE / CANCELLATION
# ────────────────────────────────────────────────
class Deadline:
    """
    Time budget shared by the AI calls of one intake run.

    Doubles as a cancellation token: once ``cancel()`` is called or the
    budget runs out, ``expired`` is true and callers skip to their fallback.
    The webhook routes never cancel a run, so expiry is the only trigger
    there; ``cancel()`` is for callers that drive ``IntakePipeline.process``
    directly with their own deadline.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._ends_at = clock() + max(float(seconds), 0.0)
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(self._ends_at - self._clock(), 0.0)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def timeout_for(self, per_call: float) -> float:
        """Per-call timeout bounded by what is left of the budget."""
        return min(float(per_call), self.remaining())


# ────────────────────────────────────────────────
# PERF TIMERS
# ────────────────────────────────────────────────
class PerfTimer:
    """Context manager that records the duration of a block to the logs."""

    def __init__(self, label: str, *, logger: Optional[logging.Logger] = None):
        self.label = label
        self.logger = logger or get_logger("perf")
        self.start: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start = time.monotonic()
        return self

    def __exit__(self, *_):
        self.duration = round(time.monotonic() - (self.start or time.monotonic()), 3)
        self.logger.info("⏱ %s: %ss", self.label, self.duration)


# ────────────────────────────────────────────────
# RETRY
# ────────────────────────────────────────────────
def retry(
    func: Callable[[], T],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: Iterable[type[BaseException]] = (Exception,),
    logger: Optional[logging.Logger] = None,
) -> T:
    """Retry a callable with exponential backoff."""
    log = logger or get_logger(__name__)
    caught = tuple(exceptions)
    attempt = 0
    while True:
        try:
            return func()
        except caught as exc:
            if attempt >= retries:
                log.error("Retry exhausted after %s attempts: %s", attempt + 1, exc)
                raise
            delay = base_delay * (backoff ** attempt)
            log.warning("Retryable error (%s/%s): %s, sleeping %.2fs", attempt + 1, retries + 1, exc, delay)
            time.sleep(delay)
            attempt += 1
