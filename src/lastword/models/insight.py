"""Insight table -- one row per exit interview, created partial and finalized in place."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.lastword.core.database import Base

SHORT_TEXT_LENGTH = 200


class InsightModel(Base):
    """Structured outcome of an exit interview.

    ``status`` is ``partial`` from the moment the greeting (or first real turn)
    is served, and ``complete`` once the interview has been finalized. A partial
    row keeps the caller's user context even if the customer abandons.
    """

    __tablename__ = "insights"
    __table_args__ = (
        Index("insights_account_created_idx", "account_id", "created_at"),
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
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="partial", server_default=text("'partial'")
    )
    surface_reason: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    deep_reasons: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    sentiment: Mapped[str] = mapped_column(
        String(20), nullable=False, default="neutral", server_default=text("'neutral'")
    )
    salvageable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    key_quote: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    category: Mapped[str] = mapped_column(
        String(30), nullable=False, default="other", server_default=text("'other'")
    )
    competitor: Mapped[str | None] = mapped_column(String(SHORT_TEXT_LENGTH), nullable=True)
    feature_gaps: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    usage_duration: Mapped[str | None] = mapped_column(String(SHORT_TEXT_LENGTH), nullable=True)
    retention_path: Mapped[str] = mapped_column(
        String(30), nullable=False, default="", server_default=text("''")
    )
    retention_accepted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    raw_transcript: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    user_context: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
