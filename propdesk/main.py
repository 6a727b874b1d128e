"""
Property Intake Desk: FastAPI application
- Inbound webhooks (Twilio SMS / voice, SendGrid inbound parse)
- Management REST API for the dashboard
- Health endpoints
"""

from __future__ import annotations

from fastapi import FastAPI

from propdesk.config import settings
from propdesk.dashboard_api import router as dashboard_router
from propdesk.inbound_webhook import router as inbound_router
from propdesk.runtime import configure_logging, get_logger, iso_now, log_core_env

VERSION = "1.0.0"

configure_logging()
logger = get_logger("main")

app = FastAPI(title="Property Intake Desk", version=VERSION)
app.include_router(inbound_router)    # → /api/sms, /api/voice, /api/email
app.include_router(dashboard_router)  # → /api/messages, /api/tenants, ...


@app.on_event("startup")
async def startup_checks():
    log_core_env()
    cfg = settings()
    modes = {
        "store": "airtable" if cfg.airtable_enabled else "in-memory",
        "ai": "openai" if cfg.ai_enabled else "fallback-only",
        "sms": "twilio" if cfg.twilio_enabled else "mock",
        "email": "sendgrid" if cfg.sendgrid_enabled else "mock",
    }
    logger.info("✅ Startup modes: %s", ", ".join(f"{k}={v}" for k, v in modes.items()))
    if cfg.REQUIRE_SIGNATURE_VALIDATION and not cfg.TWILIO_AUTH_TOKEN:
        logger.warning("REQUIRE_SIGNATURE_VALIDATION is on but TWILIO_AUTH_TOKEN is missing; Twilio webhooks will be rejected.")


@app.get("/ping")
async def ping():
    return {"ok": True, "pong": True, "time": iso_now()}


def _health_payload() -> dict:
    cfg = settings()
    return {
        "ok": True,
        "timestamp": iso_now(),
        "version": VERSION,
        "store": "airtable" if cfg.airtable_enabled else "in-memory",
        "ai_enabled": cfg.ai_enabled,
        "twilio_enabled": cfg.twilio_enabled,
        "sendgrid_enabled": cfg.sendgrid_enabled,
    }


@app.get("/health")
async def health():
    return _health_payload()


@app.get("/healthz")
async def healthz():
    return _health_payload()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("propdesk.main:app", host="0.0.0.0", port=8000, log_level="info")
