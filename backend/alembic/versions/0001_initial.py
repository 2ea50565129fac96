"""initial schema: users, chargers, bookings, charging sessions, wallet ledger

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa

from evrent.models import UTCDateTime

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)
ENERGY = sa.Numeric(12, 4)

user_role = sa.Enum("driver", "owner", "admin", name="user_role")
charger_status = sa.Enum("active", "busy", "disabled", name="charger_status")
booking_status = sa.Enum(
    "pending", "reserved", "confirmed", "active", "completed", "cancelled", "expired",
    name="booking_status",
)
session_status = sa.Enum("active", "paused", "completed", name="session_status")
wallet_tx_kind = sa.Enum("debit", "credit", name="wallet_tx_kind")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.Text, nullable=False, unique=True),
        sa.Column("name", sa.Text),
        sa.Column("role", user_role, nullable=False, server_default=sa.text("'driver'")),
        sa.Column("created_at", UTCDateTime, nullable=False),
    )

    op.create_table(
        "chargers",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("total_ports", sa.Integer, nullable=False, server_default=sa.text("1")),
        sa.Column("price_per_kwh", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("price_per_hour", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("peak_multiplier", sa.Numeric(6, 3)),
        sa.Column("status", charger_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("updated_at", UTCDateTime, nullable=False),
        sa.CheckConstraint("total_ports >= 1", name="ck_chargers_total_ports"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("charger_id", sa.Integer, sa.ForeignKey("chargers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_time", UTCDateTime, nullable=False),
        sa.Column("end_time", UTCDateTime, nullable=False),
        sa.Column("duration_minutes", sa.Integer, nullable=False),
        sa.Column("amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("paid_amount", MONEY),
        sa.Column("is_emergency", sa.Boolean, nullable=False),
        sa.Column("status", booking_status, nullable=False, server_default=sa.text("'reserved'")),
        sa.Column("notes", sa.Text),
        sa.Column("cancel_reason", sa.Text),
        sa.Column("refund_amount", MONEY),
        sa.Column("reschedule_count", sa.Integer, nullable=False),
        sa.Column("confirmed_at", UTCDateTime),
        sa.Column("cancelled_at", UTCDateTime),
        sa.Column("completed_at", UTCDateTime),
        sa.Column("rescheduled_at", UTCDateTime),
        sa.Column("expired_at", UTCDateTime),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("updated_at", UTCDateTime, nullable=False),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_window"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index(
        "ix_bookings_charger_window",
        "bookings",
        ["charger_id", "status", "start_time", "end_time"],
    )

    op.create_table(
        "charging_sessions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id", ondelete="SET NULL")),
        sa.Column("charger_id", sa.Integer, sa.ForeignKey("chargers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", session_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("start_time", UTCDateTime, nullable=False),
        sa.Column("end_time", UTCDateTime),
        sa.Column("paused_at", UTCDateTime),
        sa.Column("paused_seconds", sa.Integer, nullable=False),
        sa.Column("energy_delivered", ENERGY, nullable=False),
        sa.Column("last_energy_reading", ENERGY, nullable=False),
        sa.Column("last_sequence", sa.Integer),
        sa.Column("power_kw", sa.Numeric(10, 3)),
        sa.Column("voltage", sa.Numeric(10, 2)),
        sa.Column("current_a", sa.Numeric(10, 2)),
        sa.Column("temperature_c", sa.Numeric(6, 2)),
        sa.Column("battery_percent", sa.Numeric(5, 2)),
        sa.Column("last_telemetry_at", UTCDateTime),
        sa.Column("duration_minutes", sa.Integer),
        sa.Column("cost", MONEY),
        sa.Column("is_peak_hour", sa.Boolean),
        sa.Column("collections_flag", sa.Boolean, nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("updated_at", UTCDateTime, nullable=False),
    )
    op.create_index("ix_charging_sessions_booking_id", "charging_sessions", ["booking_id"])
    op.create_index("ix_charging_sessions_charger_id", "charging_sessions", ["charger_id"])
    op.create_index("ix_charging_sessions_user_id", "charging_sessions", ["user_id"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("balance", MONEY, nullable=False),
        sa.Column("currency", sa.Text, nullable=False, server_default=sa.text("'USD'")),
        sa.Column("is_blocked", sa.Boolean, nullable=False),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("wallet_id", sa.Integer, sa.ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("kind", wallet_tx_kind, nullable=False),
        sa.Column("reason", sa.Text),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id", ondelete="SET NULL")),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("charging_sessions.id", ondelete="SET NULL")),
        sa.Column("created_at", UTCDateTime, nullable=False),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"])


def downgrade():
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("charging_sessions")
    op.drop_table("bookings")
    op.drop_table("chargers")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in (wallet_tx_kind, session_status, booking_status, charger_status, user_role):
        enum.drop(bind, checkfirst=True)
