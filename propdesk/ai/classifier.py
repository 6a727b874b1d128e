from __future__ import annotations

import json
from typing import Any, Optional

from propdesk.ai.client import AIUnavailable, get_client
from propdesk.ai.outcome import AiSucceeded, FallbackUsed, Outcome
from propdesk.airtable_schema import Urgency
from propdesk.config import settings
from propdesk.models import Classification
from propdesk.runtime import Deadline, PerfTimer, get_logger

logger = get_logger(__name__)

FALLBACK_CATEGORY = "maintenance"
FALLBACK_SUMMARY = "Tenant reported an issue that needs attention."

# ───────────────────────────────────────────────────────────
# Prompt
# ───────────────────────────────────────────────────────────
SYSTEM_PROMPT = """You are an AI assistant for property managers. Analyze tenant messages and classify them by urgency and category.
Return JSON with the following structure: {
  "urgency": "emergency" | "high" | "medium" | "low",
  "category": (maintenance category like "plumbing", "hvac", "electrical", "general", etc.),
  "summary": (brief 1-sentence summary of the issue)
}

Urgency levels:
- emergency: life-threatening, severe property damage, safety hazard (flooding, fire, gas leak, no heat in winter, etc.)
- high: serious issues that affect habitability but not immediately dangerous (AC not working in summer, hot water out, multiple fixtures not working)
- medium: important issues that should be addressed soon (appliance malfunction, minor leaks, some electrical outlets not working)
- low: general inquiries, minor aesthetics, amenity questions, non-urgent requests"""


# ───────────────────────────────────────────────────────────
# Helpers
# ───────────────────────────────────────────────────────────
def keyword_classification(text: str) -> Classification:
    """Deterministic triage used whenever the model cannot answer."""
    lowered = (text or "").lower()
    urgent = any(keyword in lowered for keyword in settings().EMERGENCY_KEYWORDS)
    return Classification(
        urgency=Urgency.EMERGENCY if urgent else Urgency.MEDIUM,
        category=FALLBACK_CATEGORY,
        summary=FALLBACK_SUMMARY,
    )


def parse_classification(content: Optional[str]) -> Classification:
    """Validate the model's JSON; raises ValueError on any structural problem."""
    data: Any = json.loads(content or "")
    if not isinstance(data, dict):
        raise ValueError("classification is not a JSON object")
    urgency, category, summary = data.get("urgency"), data.get("category"), data.get("summary")
    if urgency not in {u.value for u in Urgency}:
        raise ValueError(f"unknown urgency {urgency!r}")
    if not isinstance(category, str) or not isinstance(summary, str):
        raise ValueError("category and summary must be strings")
    return Classification(urgency=Urgency(urgency), category=category, summary=summary)


# ───────────────────────────────────────────────────────────
# Public API
# ───────────────────────────────────────────────────────────
def classify(text: str, deadline: Optional[Deadline] = None) -> Outcome[Classification]:
    """Classify a tenant message. Never raises; degrades to ``keyword_classification``."""
    try:
        client = get_client(deadline)
        with PerfTimer("ai.classify", logger=logger):
            resp = client.chat.completions.create(
                model=settings().OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
            )
        content = resp.choices[0].message.content if resp and resp.choices else None
        return AiSucceeded(parse_classification(content))
    except AIUnavailable as exc:
        logger.info("Classifier skipped AI (%s); using keyword triage.", exc)
        return FallbackUsed(keyword_classification(text), reason=str(exc))
    except Exception as exc:
        logger.warning("Classification failed; using keyword triage: %s", exc)
        return FallbackUsed(keyword_classification(text), reason=str(exc))
