from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from .types import UTCDateTime, utcnow

Base = declarative_base()
metadata = Base.metadata

MONEY = Numeric(12, 2)
ENERGY = Numeric(12, 4)

BOOKING_STATUSES = ("pending", "reserved", "confirmed", "active", "completed", "cancelled", "expired")
SESSION_STATUSES = ("active", "paused", "completed")
CHARGER_STATUSES = ("active", "busy", "disabled")


class Users(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    role = Column(Enum('driver', 'owner', 'admin', name='user_role'), nullable=False, server_default=text("'driver'"))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    chargers = relationship('Chargers', back_populates='owner')
    bookings = relationship('Bookings', back_populates='user')
    wallet = relationship('Wallets', uselist=False, back_populates='user')


class Chargers(Base):
    __tablename__ = 'chargers'
    __table_args__ = (
        CheckConstraint('total_ports >= 1', name='ck_chargers_total_ports'),
    )

    id = Column(Integer, primary_key=True)
    owner_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    total_ports = Column(Integer, nullable=False, server_default=text('1'))
    price_per_kwh = Column(MONEY, nullable=False, server_default=text('0'))
    price_per_hour = Column(MONEY, nullable=False, server_default=text('0'))
    peak_multiplier = Column(Numeric(6, 3))
    status = Column(Enum(*CHARGER_STATUSES, name='charger_status'), nullable=False, server_default=text("'active'"))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship('Users', back_populates='chargers')
    bookings = relationship('Bookings', back_populates='charger')
    sessions = relationship('ChargingSessions', back_populates='charger')


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        CheckConstraint('end_time > start_time', name='ck_bookings_window'),
        Index('ix_bookings_charger_window', 'charger_id', 'status', 'start_time', 'end_time'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    charger_id = Column(ForeignKey('chargers.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    amount = Column(MONEY, nullable=False, server_default=text('0'))
    paid_amount = Column(MONEY)
    is_emergency = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(*BOOKING_STATUSES, name='booking_status'), nullable=False, server_default=text("'reserved'"))
    notes = Column(Text)
    cancel_reason = Column(Text)
    refund_amount = Column(MONEY)
    reschedule_count = Column(Integer, nullable=False, default=0)
    confirmed_at = Column(UTCDateTime)
    cancelled_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    rescheduled_at = Column(UTCDateTime)
    expired_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship('Users', back_populates='bookings')
    charger = relationship('Chargers', back_populates='bookings')
    sessions = relationship('ChargingSessions', back_populates='booking')
    wallet_transactions = relationship('WalletTransactions', back_populates='booking')


class ChargingSessions(Base):
    __tablename__ = 'charging_sessions'

    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'), index=True)  # NULL = walk-up
    charger_id = Column(ForeignKey('chargers.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    status = Column(Enum(*SESSION_STATUSES, name='session_status'), nullable=False, server_default=text("'active'"))
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime)
    paused_at = Column(UTCDateTime)
    paused_seconds = Column(Integer, nullable=False, default=0)

    energy_delivered = Column(ENERGY, nullable=False, default=0)
    last_energy_reading = Column(ENERGY, nullable=False, default=0)
    last_sequence = Column(Integer)

    # Latest instantaneous telemetry, observability only
    power_kw = Column(Numeric(10, 3))
    voltage = Column(Numeric(10, 2))
    current_a = Column(Numeric(10, 2))
    temperature_c = Column(Numeric(6, 2))
    battery_percent = Column(Numeric(5, 2))
    last_telemetry_at = Column(UTCDateTime)

    duration_minutes = Column(Integer)
    cost = Column(MONEY)
    is_peak_hour = Column(Boolean)
    collections_flag = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    booking = relationship('Bookings', back_populates='sessions')
    charger = relationship('Chargers', back_populates='sessions')
    wallet_transactions = relationship('WalletTransactions', back_populates='session')


class Wallets(Base):
    __tablename__ = 'wallets'

    id = Column(Integer, primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)
    balance = Column(MONEY, nullable=False, default=0)
    currency = Column(Text, nullable=False, server_default=text("'USD'"))
    is_blocked = Column(Boolean, nullable=False, default=False)

    user = relationship('Users', back_populates='wallet')
    wallet_transactions = relationship('WalletTransactions', back_populates='wallet')


class WalletTransactions(Base):
    __tablename__ = 'wallet_transactions'

    id = Column(Integer, primary_key=True)
    wallet_id = Column(ForeignKey('wallets.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)  # signed: credit > 0, debit < 0
    kind = Column(Enum('debit', 'credit', name='wallet_tx_kind'), nullable=False)
    reason = Column(Text)
    booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))
    session_id = Column(ForeignKey('charging_sessions.id', ondelete='SET NULL'))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    wallet = relationship('Wallets', back_populates='wallet_transactions')
    booking = relationship('Bookings', back_populates='wallet_transactions')
    session = relationship('ChargingSessions', back_populates='wallet_transactions')
