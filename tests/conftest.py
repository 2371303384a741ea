"""Shared fixtures: an in-memory market database and object factories."""

import itertools
import random
from datetime import datetime

import pytest

from rapsim.database.models import User, Item, Holding, SALE_UNLIMITED
from rapsim.database.operations import get_engine, get_session_factory, init_database

NOW = datetime(2024, 6, 1, 12, 0, 0)


class ScriptedRandom(random.Random):
    """Random source whose random() replays a fixed script (last value repeats)."""

    def __init__(self, values):
        super().__init__(0)
        self.values = list(values)

    def random(self):
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def engine():
    engine = get_engine("sqlite://")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def _make(username=None, cash=10_000, is_ai=True, personality="casual", is_online=False):
        user = User(
            username=username or f"user{next(counter)}",
            cash=cash,
            is_ai=is_ai,
            personality=personality,
            is_online=is_online
        )
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def make_item(session):
    counter = itertools.count(1)

    def _make(name=None, value=0, rap=0, price=0, is_limited=True, sale_type=SALE_UNLIMITED,
              created_at=datetime(2020, 1, 1), **fields):
        item = Item(
            name=name or f"Item {next(counter)}",
            value=value,
            rap=rap,
            price=price,
            is_limited=is_limited,
            sale_type=sale_type,
            created_at=created_at,
            **fields
        )
        session.add(item)
        session.commit()
        return item

    return _make


@pytest.fixture
def make_holding(session):

    def _make(owner, item, is_listed=False, list_price=None, serial_number=None):
        if serial_number is None:
            serial_number = session.query(Holding).filter(Holding.item_id == item.id).count() + 1
        holding = Holding(
            owner_id=owner.id,
            item_id=item.id,
            serial_number=serial_number,
            is_listed=is_listed,
            list_price=list_price,
            acquired_at=NOW
        )
        session.add(holding)
        session.commit()
        return holding

    return _make


@pytest.fixture
def scripted():
    """Factory for ScriptedRandom sources."""
    return ScriptedRandom
