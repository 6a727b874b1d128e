"""
🏠 Property Intake Desk
-----------------------
Tenant maintenance requests in over SMS, email and voicemail; AI triage and
drafted replies; a REST API for the manager's dashboard.
"""

from .config import settings

__all__ = ["settings"]
