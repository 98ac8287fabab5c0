"""Shared test fixtures."""
from datetime import datetime
from unittest.mock import patch, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadchat.database import Base
from leadchat.models.lead_record import LeadRecord, Tonality


class FakeRedis:
    """Minimal in-memory Redis fake for circuit breaker state."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value):
        self.get_store[key] = value

    def incr(self, key):
        val = int(self.get_store.get(key) or 0) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that executes immediately."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def set(self, key, value):
        self._ops.append(('set', key, value))
        return self

    def delete(self, *keys):
        self._ops.append(('delete', keys))
        return self

    def hincrby(self, key, field, amount):
        self._ops.append(('hincrby', key, field, amount))
        return self

    def hset(self, key, field, value):
        self._ops.append(('hset', key, field, value))
        return self

    def execute(self):
        for op in self._ops:
            if op[0] == 'set':
                self._redis.set(op[1], op[2])
            elif op[0] == 'delete':
                self._redis.delete(*op[1])
            elif op[0] == 'hincrby':
                self._redis.hincrby(op[1], op[2], op[3])
            elif op[0] == 'hset':
                self._redis.hset(op[1], op[2], op[3])
        self._ops = []


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


@pytest.fixture(autouse=True)
def breakers(fake_redis):
    """Every named breaker starts CLOSED on a fresh fake Redis."""
    from leadchat.services.circuit_breaker import init_breakers
    return init_breakers(fake_redis)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads, schema created."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import leadchat.models.lead
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """sessionmaker bound to the in-memory engine (what PrimaryStoreSink takes)."""
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """SQLAlchemy session for assertions. Rolls back after each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def app(fake_redis):
    """Flask test app; the wired pipeline is replaced with a MagicMock."""
    with patch('leadchat.extensions.redis_client', fake_redis):
        from leadchat import create_app
        app = create_app()
    app.config['TESTING'] = True
    app.extensions['turn_pipeline'].shutdown()
    app.extensions['turn_pipeline'] = MagicMock()
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_lead():
    """Factory fixture — builds a fully qualified LeadRecord."""
    def _make(**overrides):
        defaults = dict(
            session_id='A1B2C3',
            name='Omar',
            phone='01012345678',
            budget=6_000_000,
            location='New Cairo',
            compound='Palm Hills',
            unit_type='villa',
            area='250 sqm',
            call_requested=True,
            best_call_time='Tuesday, 2026-10-20 at 03:00 PM',
            tonality=Tonality.URGENT,
            heat_score=100,
            summary='Wants a villa in New Cairo, asked for a call.',
            start_time=datetime(2026, 10, 19, 10, 30, 0),
        )
        defaults.update(overrides)
        return LeadRecord(**defaults)
    return _make
