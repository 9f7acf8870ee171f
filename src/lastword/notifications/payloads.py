"""Provider-shaped notification payloads.

- Generic webhook: the full structured event
  ``{"event", "event_id", "occurred_at", "account_id", "insight_id", "data"}``
- Slack incoming webhook: a flattened, human-readable subset as
  ``{"text", "blocks"}``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.lastword.interview.schemas import InsightData, UserContext

EVENT_INTERVIEW_COMPLETED = "interview_completed"


class EndpointProvider(str, Enum):
    WEBHOOK = "webhook"
    SLACK = "slack"


class InsightEvent(BaseModel):
    """A finalized insight ready to fan out."""

    account_id: str
    insight_id: str
    insight: InsightData
    user_context: UserContext | None = None
    event: str = EVENT_INTERVIEW_COMPLETED
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def build_webhook_payload(event: InsightEvent) -> dict[str, Any]:
    data = event.insight.model_dump(mode="json")
    data["user_context"] = event.user_context.present() if event.user_context else None
    return {
        "event": event.event,
        "event_id": event.event_id,
        "occurred_at": event.occurred_at.isoformat(),
        "account_id": event.account_id,
        "insight_id": event.insight_id,
        "data": data,
    }


def _humanize(value: str) -> str:
    return value.replace("_", " ").capitalize()


def build_slack_payload(event: InsightEvent) -> dict[str, Any]:
    insight = event.insight
    email = event.user_context.email if event.user_context else None
    who = email or "A customer"
    headline = f"{who} completed an exit interview: {insight.surface_reason}"

    fields = [
        f"*Category:* {_humanize(insight.category.value)}",
        f"*Sentiment:* {_humanize(insight.sentiment.value)}",
        f"*Retention path:* {_humanize(insight.retention_path.value)}"
        + (" (accepted)" if insight.retention_accepted else ""),
    ]
    if insight.competitor:
        fields.append(f"*Competitor:* {insight.competitor}")
    if email:
        fields.append(f"*Email:* {email}")

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "Exit interview completed"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Surface reason:* {insight.surface_reason}"},
        },
        {
            "type": "section",
            "fields": [{"type": "mrkdwn", "text": f} for f in fields],
        },
    ]
    if insight.key_quote:
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"> {insight.key_quote}"},
            }
        )
    return {"text": headline, "blocks": blocks}


def build_payload(provider: str, event: InsightEvent) -> dict[str, Any]:
    """Dispatch on endpoint provider kind; unknown kinds get the generic shape."""
    if provider == EndpointProvider.SLACK.value:
        return build_slack_payload(event)
    return build_webhook_payload(event)
