from .tables import (
    Base,
    BOOKING_STATUSES,
    SESSION_STATUSES,
    CHARGER_STATUSES,
    Users,
    Chargers,
    Bookings,
    ChargingSessions,
    Wallets,
    WalletTransactions,
)
from .types import UTCDateTime, utcnow

__all__ = [
    "Base",
    "BOOKING_STATUSES",
    "SESSION_STATUSES",
    "CHARGER_STATUSES",
    "Users",
    "Chargers",
    "Bookings",
    "ChargingSessions",
    "Wallets",
    "WalletTransactions",
    "UTCDateTime",
    "utcnow",
]
