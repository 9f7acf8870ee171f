"""Initial schema: accounts, configuration, insights, and notifications.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _account_fk(**kwargs) -> sa.Column:
    return sa.Column(
        "account_id",
        UUID(as_uuid=True),
        sa.ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        **kwargs,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "accounts",
        _id_column(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("api_key", sa.String(100), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "configs",
        _id_column(),
        _account_fk(unique=True),
        sa.Column("product_name", sa.String(200), nullable=False, server_default=sa.text("''")),
        sa.Column("product_description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("competitors", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("plans", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("retention_paths", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("min_exchanges", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("max_exchanges", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("brand_voice", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "competitors",
        _id_column(),
        _account_fk(index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("questions", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "rules",
        _id_column(),
        _account_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("condition_logic", sa.String(3), nullable=False, server_default=sa.text("'AND'")),
        sa.Column("conditions", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("prompt_addition", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("rules_account_priority_idx", "rules", ["account_id", "priority"])

    op.create_table(
        "insights",
        _id_column(),
        _account_fk(),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'partial'")),
        sa.Column("surface_reason", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("deep_reasons", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("sentiment", sa.String(20), nullable=False, server_default=sa.text("'neutral'")),
        sa.Column("salvageable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("key_quote", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("category", sa.String(30), nullable=False, server_default=sa.text("'other'")),
        sa.Column("competitor", sa.String(200), nullable=True),
        sa.Column("feature_gaps", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("usage_duration", sa.String(200), nullable=True),
        sa.Column("retention_path", sa.String(30), nullable=False, server_default=sa.text("''")),
        sa.Column("retention_accepted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("raw_transcript", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("user_context", JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("insights_account_created_idx", "insights", ["account_id", "created_at"])

    op.create_table(
        "notification_endpoints",
        _id_column(),
        _account_fk(),
        sa.Column("name", sa.String(200), nullable=False, server_default=sa.text("''")),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("signing_secret", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("auth_header_name", sa.String(200), nullable=True),
        sa.Column("auth_header_value", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "event_type", sa.String(50), nullable=False, server_default=sa.text("'interview_completed'")
        ),
        sa.Column("delivery_mode", sa.String(20), nullable=False, server_default=sa.text("'realtime'")),
        sa.Column("digest_hour_utc", sa.SmallInteger(), nullable=False, server_default=sa.text("9")),
        sa.Column("digest_weekday_utc", sa.SmallInteger(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "notification_endpoints_enabled_idx", "notification_endpoints", ["account_id", "enabled"]
    )

    op.create_table(
        "notification_deliveries",
        _id_column(),
        _account_fk(),
        sa.Column(
            "endpoint_id",
            UUID(as_uuid=True),
            sa.ForeignKey("notification_endpoints.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "insight_id",
            UUID(as_uuid=True),
            sa.ForeignKey("insights.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "event_type", sa.String(50), nullable=False, server_default=sa.text("'interview_completed'")
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("payload", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "notification_deliveries_account_idx", "notification_deliveries", ["account_id", "attempted_at"]
    )
    op.create_index(
        "notification_deliveries_endpoint_idx", "notification_deliveries", ["endpoint_id", "attempted_at"]
    )


def downgrade() -> None:
    op.drop_table("notification_deliveries")
    op.drop_table("notification_endpoints")
    op.drop_table("insights")
    op.drop_table("rules")
    op.drop_table("competitors")
    op.drop_table("configs")
    op.drop_table("accounts")
