"""End-to-end tests for ScreeningService on the in-memory store."""

import threading

import pytest

from screengate.errors import (
    InsufficientCredits,
    InvalidApiKey,
    JobNotFound,
    NoActiveSubscription,
    QueueFailure,
    RateLimited,
    ServiceClosed,
)
from screengate.schemas import JobStatus, ScreeningInput
from screengate.service import ScreeningService

from conftest import FREE


def echo_worker(screening_input):
    return {"file": screening_input.file_name, "size": len(screening_input.content)}


def failing_worker(screening_input):
    raise RuntimeError("model crashed")


@pytest.fixture
def make_service(store, config, clock, monotonic):
    services = []

    def _make(worker=echo_worker):
        service = ScreeningService(store, store, store, worker, config=config, clock=clock, monotonic=monotonic)
        services.append(service)
        return service

    yield _make
    for service in services:
        service.shutdown()


def test_submit_runs_job_and_debits(make_service, store, subscribe):
    sub_id = subscribe(credits=3)
    service = make_service()

    submission = service.submit("user-1", ScreeningInput(file_name="a.png", content=b"abc"))
    assert submission.status == JobStatus.RUNNING

    job = service.wait_for(submission.job_id, timeout=5)
    assert job.status == JobStatus.DONE
    assert job.debug == {"response": {"file": "a.png", "size": 3}}
    assert store.get_subscription(sub_id).credits == 2
    assert service.ledger.pending() == []


def test_failed_job_refunds(make_service, store, subscribe):
    sub_id = subscribe(credits=3)
    service = make_service(failing_worker)

    submission = service.submit("user-1", ScreeningInput(file_name="a.png"))
    job = service.wait_for(submission.job_id, timeout=5)

    assert job.status == JobStatus.ERROR
    assert job.debug["code"] == "WORKER_FAILURE"
    assert store.get_subscription(sub_id).credits == 3


def test_submit_with_key(make_service, subscribe, api_key):
    subscribe(credits=1)
    service = make_service()

    submission = service.submit_with_key("Bearer sg-test-key", ScreeningInput(file_name="a.png"))
    assert service.wait_for(submission.job_id, timeout=5).user_id == "user-1"

    with pytest.raises(InvalidApiKey):
        service.submit_with_key("Bearer nope", ScreeningInput(file_name="a.png"))


def test_rejections_leave_no_job(make_service, store, subscribe):
    service = make_service()

    with pytest.raises(NoActiveSubscription):
        service.submit("user-1", ScreeningInput(file_name="a.png"))

    subscribe(credits=0)
    with pytest.raises(InsufficientCredits):
        service.submit("user-1", ScreeningInput(file_name="a.png"))

    assert store.jobs == {}


def test_rate_limit_through_service(make_service, subscribe, monotonic):
    subscribe(credits=100, package=FREE)
    release = threading.Event()
    service = make_service(lambda _: release.wait(5))

    try:
        for _ in range(FREE.rate_limit):
            service.submit("user-1", ScreeningInput(file_name="a.png"))
        with pytest.raises(RateLimited):
            service.submit("user-1", ScreeningInput(file_name="a.png"))

        monotonic.advance(60)
        service.submit("user-1", ScreeningInput(file_name="a.png"))
    finally:
        release.set()


def test_get_job_unknown(make_service):
    with pytest.raises(JobNotFound):
        make_service().get_job("missing")


def test_pairing_round_trip(make_service):
    service = make_service()

    code, pin = service.issue_link("user-1")
    assert service.redeem_link(code, pin) == "user-1"


def test_purge(make_service, clock, monotonic):
    service = make_service()
    service.issue_link("user-1")
    service.limiter.try_acquire("user-1", 10, 60)

    clock.advance(601)
    monotonic.advance(61)

    assert service.purge() == {"links": 1, "rate_windows": 1}


def test_shut_down_service_refuses_jobs(make_service, store, subscribe):
    sub_id = subscribe(credits=5)
    service = make_service()
    service.shutdown()

    with pytest.raises(ServiceClosed):
        service.submit("user-1", ScreeningInput(file_name="a.png"))

    assert store.jobs == {}
    assert store.get_subscription(sub_id).credits == 5


def test_queue_failure_after_admission_refunds(make_service, store, subscribe):
    """The pool goes away between admission and queueing."""
    sub_id = subscribe(credits=5)
    service = make_service()
    service.executor.shutdown()

    with pytest.raises(QueueFailure):
        service.submit("user-1", ScreeningInput(file_name="a.png"))

    [job] = store.jobs.values()
    assert job.status == JobStatus.ERROR
    assert store.get_subscription(sub_id).credits == 5
    assert service.ledger.pending() == []
