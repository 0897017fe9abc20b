"""Initial database schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

booking_status = sa.Enum("CONFIRMED", "ATTENDED", "CANCELLED", name="booking_status")
user_role = sa.Enum("SUPER_ADMIN", "FRANCHISE_OWNER", "COACH", "MEMBER", name="user_role")
membership_plan = sa.Enum("DIGITAL", "ZAPOY", "COACHING", name="membership_plan")


def upgrade() -> None:
    op.create_table(
        "studios",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("max_capacity_per_slot", sa.Integer(), nullable=False, server_default=sa.text("6")),
        sa.Column("opening_hour", sa.Integer(), nullable=False, server_default=sa.text("8")),
        sa.Column("closing_hour", sa.Integer(), nullable=False, server_default=sa.text("20")),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="Europe/Paris"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("max_capacity_per_slot >= 0", name="ck_studios_capacity_non_negative"),
        sa.CheckConstraint(
            "opening_hour >= 0 AND closing_hour <= 24 AND opening_hour < closing_hour",
            name="ck_studios_opening_hours",
        ),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("first_name", sa.String(length=80), nullable=True),
        sa.Column("last_name", sa.String(length=80), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("plan", membership_plan, nullable=True),
        sa.Column("subscription_status", sa.String(length=32), nullable=True),
        sa.Column("home_studio_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["home_studio_id"], ["studios.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("telegram_id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_home_studio_id", "users", ["home_studio_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("studio_id", sa.Integer(), nullable=False),
        sa.Column("status", booking_status, nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("program_used", sa.String(length=120), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["studio_id"], ["studios.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_reference"),
        sa.CheckConstraint("ends_at > starts_at", name="ck_bookings_interval"),
    )
    op.create_index("ix_bookings_studio_starts_at", "bookings", ["studio_id", "starts_at"], unique=False)
    op.create_index("ix_bookings_user_starts_at", "bookings", ["user_id", "starts_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bookings_user_starts_at", table_name="bookings")
    op.drop_index("ix_bookings_studio_starts_at", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_users_home_studio_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("studios")
    bind = op.get_bind()
    booking_status.drop(bind, checkfirst=True)
    membership_plan.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
