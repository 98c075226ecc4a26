"""Shared fixtures: an in-memory store with reference packages and fake clocks."""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from screengate.config import Config
from screengate.schemas import ApiKeyRecord, PackageRecord, SubscriptionRecord
from screengate.stores import MemoryStore

FREE = PackageRecord(id=1, name="Free", rate_limit=60)
PRO = PackageRecord(id=2, name="Pro", rate_limit=600)
UNLIMITED = PackageRecord(id=3, name="Unlimited", rate_limit=0)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 2, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def store():
    store = MemoryStore()
    for package in (FREE, PRO, UNLIMITED):
        store.add_package(package)
    return store


@pytest.fixture
def subscribe(store, clock):
    """Factory: give a user a subscription, returns its id."""
    ids = count(1)

    def _subscribe(user_id="user-1", credits=10, package=UNLIMITED, expires_in=timedelta(days=30)):
        sub = SubscriptionRecord(
            id=next(ids),
            user_id=user_id,
            package_id=package.id,
            expires_at=clock() + expires_in if expires_in is not None else None,
            credits=credits,
        )
        store.add_subscription(sub)
        return sub.id

    return _subscribe


@pytest.fixture
def api_key(store):
    return store.add_api_key(ApiKeyRecord(id="key-1", user_id="user-1", name="default", key="sg-test-key"))


@pytest.fixture
def config():
    return Config(
        sg_rate_window_seconds=60.0,
        sg_job_cost=1,
        sg_max_concurrent_jobs=2,
        sg_job_timeout_seconds=5.0,
        sg_link_ttl_seconds=600.0,
    )
