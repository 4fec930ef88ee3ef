"""Founders, startups, sponsor slots and Stripe event log."""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

SPONSOR_AUDIT_ACTION = sa.Enum("Assigned", "Extended", "Cancelled", "Expired", name="sponsor_audit_action")
STRIPE_EVENT_STATUS = sa.Enum(
    "received",
    "processed",
    "ignored",
    "rejected",
    "capacity_exceeded",
    "failed",
    name="stripe_event_status",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("avatar", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "startups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("avatar", sa.String(length=500), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=120), nullable=True),
        sa.Column("twitter", sa.String(length=120), nullable=True),
        sa.Column("stripe_key", sa.String(length=255), nullable=False),
        sa.Column("revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_30_days", sa.Float(), nullable=False, server_default="0"),
        sa.Column("mrr", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_sponsored", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sponsor_slot", sa.Integer(), nullable=True),
        sa.Column("sponsor_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sponsor_duration_months", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sponsor_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ad_views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ad_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ad_generated_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("sponsor_slot", name="uq_startups_sponsor_slot"),
        sa.CheckConstraint("sponsor_slot IS NULL OR sponsor_slot >= 1", name="ck_startups_sponsor_slot_positive"),
    )
    op.create_index("ix_startups_owner_id", "startups", ["owner_id"])
    op.create_index("ix_startups_category", "startups", ["category"])
    op.create_index("ix_startups_is_sponsored", "startups", ["is_sponsored"])
    op.create_index("ix_startups_sponsor_expires_at", "startups", ["sponsor_expires_at"])

    op.create_table(
        "sponsor_audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("startup_id", sa.Integer(), sa.ForeignKey("startups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", SPONSOR_AUDIT_ACTION, nullable=False),
        sa.Column("slot", sa.Integer(), nullable=True),
        sa.Column("months", sa.Integer(), nullable=True),
        sa.Column("expires_before", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(length=60), nullable=True),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_sponsor_audits_startup_id", "sponsor_audits", ["startup_id"])

    op.create_table(
        "stripe_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=120), nullable=False),
        sa.Column("livemode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("object_id", sa.String(length=120), nullable=True),
        sa.Column("startup_id", sa.Integer(), nullable=True),
        sa.Column("status", STRIPE_EVENT_STATUS, nullable=False, server_default="received"),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_stripe_events_event_id", "stripe_events", ["event_id"], unique=True)
    op.create_index("ix_stripe_events_type", "stripe_events", ["type"])
    op.create_index("ix_stripe_events_object_id", "stripe_events", ["object_id"])
    op.create_index("ix_stripe_events_startup_id", "stripe_events", ["startup_id"])
    op.create_index("ix_stripe_events_type_created", "stripe_events", ["type", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_stripe_events_type_created", table_name="stripe_events")
    op.drop_index("ix_stripe_events_startup_id", table_name="stripe_events")
    op.drop_index("ix_stripe_events_object_id", table_name="stripe_events")
    op.drop_index("ix_stripe_events_type", table_name="stripe_events")
    op.drop_index("ix_stripe_events_event_id", table_name="stripe_events")
    op.drop_table("stripe_events")

    op.drop_index("ix_sponsor_audits_startup_id", table_name="sponsor_audits")
    op.drop_table("sponsor_audits")

    op.drop_index("ix_startups_sponsor_expires_at", table_name="startups")
    op.drop_index("ix_startups_is_sponsored", table_name="startups")
    op.drop_index("ix_startups_category", table_name="startups")
    op.drop_index("ix_startups_owner_id", table_name="startups")
    op.drop_table("startups")

    op.drop_index("ix_users_username", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    STRIPE_EVENT_STATUS.drop(op.get_bind(), checkfirst=True)
    SPONSOR_AUDIT_ACTION.drop(op.get_bind(), checkfirst=True)
