import json
import os
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ["LOCAL_TIMEZONE"] = "UTC"
os.environ["SWEEPS_ENABLED"] = "false"

import pytest
from sqlalchemy.orm import sessionmaker

from evrent.database import build_engine, transaction
from evrent.models import Base, Chargers, Users
from evrent.services import events, ledger


class FakeRedis:
    """Records pushed events instead of talking to Redis."""

    def __init__(self):
        self.lists: dict[str, list] = {}

    def rpush(self, key, value):
        self.lists.setdefault(key, []).append(json.loads(value))
        return len(self.lists[key])

    def ping(self):
        return True

    def events(self, event_type=None):
        items = self.lists.get(events.P2P_QUEUE, [])
        if event_type is None:
            return items
        return [e for e in items if e["type"] == event_type]


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(events, "redis_client", fake)
    return fake


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="driver", balance=None):
        counter["n"] += 1
        with transaction(db):
            user = Users(email=f"user{counter['n']}@example.com", name=f"User {counter['n']}", role=role)
            db.add(user)
            db.flush()
            if balance is not None:
                ledger.credit(db, user.id, Decimal(str(balance)), "Initial deposit")
        return user

    return _make


@pytest.fixture
def make_charger(db, make_user):
    def _make(total_ports=1, per_kwh="0.30", per_hour="1.00", peak_multiplier=None, status="active"):
        owner = make_user(role="owner")
        with transaction(db):
            charger = Chargers(
                owner_id=owner.id,
                name="Bay",
                total_ports=total_ports,
                price_per_kwh=Decimal(per_kwh),
                price_per_hour=Decimal(per_hour),
                peak_multiplier=Decimal(peak_multiplier) if peak_multiplier else None,
                status=status,
            )
            db.add(charger)
        return charger

    return _make
