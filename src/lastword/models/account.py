"""Account-owned configuration tables -- read-only from the interview engine.

Four SQLAlchemy models:
- Account: the tenant, identified by an opaque access key
- InterviewConfig: product context, retention playbook, and exchange bounds
- Competitor: named competitor with account-specific probing questions
- TargetingRule: prioritized condition set that injects extra prompt guidance

Rows are created by signup and edited by the settings UI. This service only
reads them, so out-of-range values (e.g., min_exchanges > max_exchanges) are
tolerated at rest and corrected by the config resolver at read time.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.lastword.core.database import Base


class Account(Base):
    """Customer account using the exit-interview widget."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    api_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class InterviewConfig(Base):
    """Per-account interview configuration (one row per account)."""

    __tablename__ = "configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    product_name: Mapped[str] = mapped_column(
        String(200), nullable=False, default="", server_default=text("''")
    )
    product_description: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    competitors: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    # [{"name": "Pro", "price": "$12/mo"}, ...]
    plans: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    # {"pause": {"enabled": true, "offer": "..."}, "downgrade": {...}, ...}
    retention_paths: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    min_exchanges: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default=text("3")
    )
    max_exchanges: Mapped[int] = mapped_column(
        Integer, nullable=False, default=5, server_default=text("5")
    )
    brand_voice: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class Competitor(Base):
    """Competitor tracked by an account, with questions to ask when it comes up."""

    __tablename__ = "competitors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    questions: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TargetingRule(Base):
    """Targeting rule evaluated against caller-supplied user attributes.

    Lower priority values are evaluated first. ``conditions`` is a JSON list
    of ``{"variable", "operator", "value"}`` objects.
    """

    __tablename__ = "rules"
    __table_args__ = (
        Index("rules_account_priority_idx", "account_id", "priority"),
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
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    condition_logic: Mapped[str] = mapped_column(
        String(3), nullable=False, default="AND", server_default=text("'AND'")
    )
    conditions: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    prompt_addition: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=text("''")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
