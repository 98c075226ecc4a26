"""Tests for the admission controller."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from screengate.admission import AdmissionController
from screengate.errors import (
    InsufficientCredits,
    NoActiveSubscription,
    RateLimited,
    StorageUnavailable,
)
from screengate.ledger import CreditLedger
from screengate.rate_limiter import RateLimiter
from screengate.schemas import JobStatus, PackageRecord

from conftest import FREE, UNLIMITED


@pytest.fixture
def limiter(monotonic):
    return RateLimiter(clock=monotonic)


@pytest.fixture
def ledger(store, clock):
    return CreditLedger(store, clock=clock)


@pytest.fixture
def controller(store, ledger, limiter):
    return AdmissionController(store, store, ledger, limiter, window=60.0, default_cost=1)


def test_admit_creates_running_job(controller, subscribe, store, ledger):
    sub_id = subscribe(credits=3)

    admission = controller.admit("user-1", "shot.png")

    job = store.get(admission.job_id)
    assert job.status is JobStatus.RUNNING
    assert job.user_id == "user-1"
    assert job.file_name == "shot.png"
    assert admission.subscription_id == sub_id
    assert admission.token.amount == 1
    assert ledger.balance(sub_id) == 2


def test_no_subscription(controller):
    with pytest.raises(NoActiveSubscription):
        controller.admit("nobody", "shot.png")


def test_expired_and_empty_subscriptions_are_inactive(controller, subscribe, clock):
    subscribe(credits=5, expires_in=timedelta(seconds=10))
    subscribe(credits=0)
    clock.advance(11)

    with pytest.raises(NoActiveSubscription):
        controller.admit("user-1", "shot.png")


def test_subscription_without_package_is_inactive(controller, store, subscribe):
    subscribe(credits=5, package=PackageRecord(id=42, name="Gone", rate_limit=1))

    with pytest.raises(NoActiveSubscription):
        controller.admit("user-1", "shot.png")


def test_soonest_expiring_subscription_is_used(controller, subscribe, ledger):
    later = subscribe(credits=5, expires_in=timedelta(days=30))
    sooner = subscribe(credits=5, expires_in=timedelta(days=2))
    forever = subscribe(credits=5, expires_in=None)

    admission = controller.admit("user-1", "shot.png")

    assert admission.subscription_id == sooner
    assert ledger.balance(later) == 5
    assert ledger.balance(forever) == 5


def test_concurrent_requests_share_credits(store, ledger, limiter, subscribe):
    """credits=5, cost=2, three concurrent requests: two admitted, one rejected, balance 1."""
    controller = AdmissionController(store, store, ledger, limiter, default_cost=2)
    sub_id = subscribe(credits=5)
    barrier = threading.Barrier(3)

    def attempt(i):
        barrier.wait()
        try:
            return controller.admit("user-1", f"shot-{i}.png")
        except InsufficientCredits as e:
            return e

    with ThreadPoolExecutor(max_workers=3) as pool:
        results = list(pool.map(attempt, range(3)))

    admitted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, InsufficientCredits)]
    assert len(admitted) == 2
    assert len(rejected) == 1
    assert ledger.balance(sub_id) == 1
    assert len(store.jobs) == 2


def test_rate_limit_caps_admissions(store, ledger, limiter, subscribe):
    """rate_limit=10 per minute, 15 requests: 10 admitted, 5 RateLimited."""
    controller = AdmissionController(store, store, ledger, limiter, window=60.0)
    store.add_package(PackageRecord(id=10, name="Ten", rate_limit=10))
    sub_id = subscribe(credits=100, package=store.get_package(10))

    outcomes = []
    for i in range(15):
        try:
            controller.admit("user-1", f"{i}.png")
            outcomes.append("ok")
        except RateLimited as e:
            outcomes.append(e.code)

    assert outcomes.count("ok") == 10
    assert outcomes.count("RATE_LIMITED") == 5
    # rejected requests were never charged
    assert ledger.balance(sub_id) == 90


def test_concurrent_rate_limit(store, ledger, limiter, subscribe):
    controller = AdmissionController(store, store, ledger, limiter, window=60.0)
    store.add_package(PackageRecord(id=10, name="Ten", rate_limit=10))
    subscribe(credits=100, package=store.get_package(10))
    barrier = threading.Barrier(15)

    def attempt(i):
        barrier.wait()
        try:
            controller.admit("user-1", f"{i}.png")
            return True
        except RateLimited:
            return False

    with ThreadPoolExecutor(max_workers=15) as pool:
        results = list(pool.map(attempt, range(15)))

    assert results.count(True) == 10


def test_rate_limit_error_payload(controller, subscribe, store):
    store.add_package(PackageRecord(id=11, name="One", rate_limit=1))
    subscribe(credits=5, package=store.get_package(11))
    controller.admit("user-1", "a.png")

    with pytest.raises(RateLimited) as exc:
        controller.admit("user-1", "b.png")

    payload = exc.value.to_dict()
    assert payload["code"] == "RATE_LIMITED"
    assert payload["limit"] == {"requests": 1, "window_seconds": 60.0}


def test_credit_rejection_releases_rate_slot(controller, subscribe, store, limiter):
    store.add_package(PackageRecord(id=11, name="One", rate_limit=1))
    sub_id = subscribe(credits=1, package=store.get_package(11))

    with pytest.raises(InsufficientCredits):
        controller.admit("user-1", "a.png", cost=2)

    assert limiter.usage("user-1") == 0
    assert store.get_subscription(sub_id).credits == 1
    # the slot is usable by a request the account can afford
    controller.admit("user-1", "b.png", cost=1)


def test_job_store_failure_undoes_everything(store, ledger, limiter, subscribe, monkeypatch):
    controller = AdmissionController(store, store, ledger, limiter)
    sub_id = subscribe(credits=3, package=FREE)

    def broken_create(*args):
        raise StorageUnavailable()

    monkeypatch.setattr(store, "create_running", broken_create)

    with pytest.raises(StorageUnavailable):
        controller.admit("user-1", "a.png")

    assert ledger.balance(sub_id) == 3
    assert ledger.pending() == []
    assert limiter.usage("user-1") == 0


def test_cost_function(store, ledger, limiter, subscribe):
    controller = AdmissionController(
        store, store, ledger, limiter,
        cost_of=lambda file_name: 3 if file_name.endswith(".pdf") else 1,
    )
    sub_id = subscribe(credits=10, package=UNLIMITED)

    controller.admit("user-1", "doc.pdf")
    controller.admit("user-1", "shot.png")

    assert ledger.balance(sub_id) == 6
