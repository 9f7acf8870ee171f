"""Notification integrations: configured endpoints and the delivery audit log."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.lastword.core.database import Base


class NotificationEndpoint(Base):
    """A webhook or Slack incoming-webhook target configured by an account.

    Only ``delivery_mode == "realtime"`` endpoints are dispatched by the
    interview engine. Digest hour/weekday are owned by the digest scheduler.
    """

    __tablename__ = "notification_endpoints"
    __table_args__ = (
        Index("notification_endpoints_enabled_idx", "account_id", "enabled"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="", server_default=text("''"))
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # webhook | slack
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    signing_secret: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    auth_header_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    auth_header_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="interview_completed", server_default=text("'interview_completed'")
    )
    delivery_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default="realtime", server_default=text("'realtime'")
    )
    digest_hour_utc: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=9, server_default=text("9"))
    digest_weekday_utc: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1, server_default=text("1"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class NotificationDelivery(Base):
    """One row per dispatch attempt.

    Written with ``status="skipped"`` before the network call and updated
    with the real outcome afterwards, so a crash mid-call still leaves a trace.
    """

    __tablename__ = "notification_deliveries"
    __table_args__ = (
        Index("notification_deliveries_account_idx", "account_id", "attempted_at"),
        Index("notification_deliveries_endpoint_idx", "endpoint_id", "attempted_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    endpoint_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("notification_endpoints.id", ondelete="SET NULL"),
        nullable=True,
    )
    insight_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("insights.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="interview_completed", server_default=text("'interview_completed'")
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success | failed | skipped
    payload: Mapped[dict] = mapped_column(JSON, default=dict, server_default=text("'{}'::json"))
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
