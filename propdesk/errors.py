"""Error taxonomy shared by the intake pipeline, the store and the HTTP routes."""

from __future__ import annotations

from typing import Any, Optional


class IntakeError(Exception):
    """Base class for every error raised by propdesk."""


class InvalidPayload(IntakeError):
    """Missing sender/content, malformed filter params or update values."""


class NotFoundError(IntakeError):
    """Unknown message, tenant or property id."""


class StoreError(IntakeError):
    """Persistence backend failure."""


class DeliveryError(IntakeError):
    """Outbound send rejected by the vendor (or by local validation before dispatch)."""

    def __init__(
        self,
        message: str,
        *,
        channel: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        body: Any = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code
        self.code = code
        self.body = body
        self.hint = hint

    def __str__(self) -> str:
        base = super().__str__()
        if self.code is not None and str(self.code) not in base:
            base = f"{base} (code {self.code})"
        return base

    def to_payload(self) -> dict:
        return {
            "success": False,
            "message": super().__str__(),
            "code": self.code,
            "status": self.status_code,
            "hint": self.hint,
        }
