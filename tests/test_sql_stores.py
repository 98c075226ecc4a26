"""Tests for the SQLAlchemy stores and account helpers on a temporary SQLite database."""

from datetime import datetime, timedelta, timezone

import pytest

from screengate.database import init_db, make_session_factory
from screengate.database.config import create_db_engine
from screengate.db import (
    DEMO_USERS,
    create_api_key,
    create_user,
    ensure_packages,
    get_user_balance,
    list_jobs,
    record_payment_and_subscribe,
    seed_demo_data,
)
from screengate.ledger import CreditLedger
from screengate.schemas import JobStatus, LinkRecord, ScreeningInput
from screengate.service import ScreeningService
from screengate.stores import SqlAccountStore, SqlJobStore, SqlLinkStore
from screengate.utils import utcnow


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'screengate.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def user_id(session_factory):
    ensure_packages(session_factory)
    return create_user("alice@example.com", "hash", session_factory=session_factory)


@pytest.fixture
def accounts(session_factory):
    return SqlAccountStore(session_factory)


def test_subscription_round_trip(accounts, user_id, session_factory):
    sub_id = record_payment_and_subscribe(user_id, 1, 5, session_factory=session_factory)

    sub = accounts.get_subscription(sub_id)
    assert sub.user_id == user_id
    assert sub.credits == 5
    assert sub.expires_at.tzinfo is not None
    assert [s.id for s in accounts.list_subscriptions(user_id)] == [sub_id]
    assert accounts.get_package(1).rate_limit == 60


def test_conditional_debit(accounts, user_id, session_factory):
    sub_id = record_payment_and_subscribe(user_id, 1, 2, session_factory=session_factory)
    now = utcnow()

    assert accounts.try_debit(sub_id, 2, now)
    assert not accounts.try_debit(sub_id, 1, now)
    assert accounts.get_subscription(sub_id).credits == 0

    accounts.credit(sub_id, 1)
    assert accounts.get_subscription(sub_id).credits == 1


def test_debit_refused_after_expiry(accounts, user_id, session_factory):
    sub_id = record_payment_and_subscribe(user_id, 1, 5, days=1, session_factory=session_factory)

    assert not accounts.try_debit(sub_id, 1, utcnow() + timedelta(days=2))
    assert accounts.get_subscription(sub_id).credits == 5


def test_never_expiring_subscription(accounts, user_id, session_factory):
    sub_id = record_payment_and_subscribe(user_id, 2, 1, days=None, session_factory=session_factory)

    assert accounts.get_subscription(sub_id).expires_at is None
    assert accounts.try_debit(sub_id, 1, utcnow() + timedelta(days=3650))


def test_negative_credits_rejected(user_id, session_factory):
    with pytest.raises(ValueError):
        record_payment_and_subscribe(user_id, 1, -1, session_factory=session_factory)


def test_ledger_on_sql(accounts, user_id, session_factory):
    sub_id = record_payment_and_subscribe(user_id, 1, 3, session_factory=session_factory)
    ledger = CreditLedger(accounts)

    token = ledger.reserve(sub_id, 2)
    assert ledger.balance(sub_id) == 1
    assert ledger.refund(token)
    assert ledger.balance(sub_id) == 3


def test_job_lifecycle(session_factory, user_id):
    jobs = SqlJobStore(session_factory)

    jobs.create_running("job-1", user_id, "a.png")
    assert jobs.get("job-1").status == JobStatus.RUNNING

    jobs.mark_done("job-1", {"response": {"ok": True}})
    job = jobs.get("job-1")
    assert job.status == JobStatus.DONE
    assert job.debug == {"response": {"ok": True}}
    assert job.updated_at is not None
    assert jobs.get("missing") is None


def test_links(session_factory, user_id):
    links = SqlLinkStore(session_factory)
    now = utcnow()
    link = LinkRecord(id="l1", user_id=user_id, code="ABCD2345", pin="0042", created_at=now)

    assert links.insert_link(link)
    assert not links.insert_link(link.model_copy(update={"id": "l2"}))
    assert links.get_link("ABCD2345").pin == "0042"

    assert links.consume_link("ABCD2345")
    assert not links.consume_link("ABCD2345")
    assert links.get_link("ABCD2345") is None


def test_delete_links_before(session_factory, user_id):
    links = SqlLinkStore(session_factory)
    now = utcnow()
    links.insert_link(LinkRecord(id="old", user_id=user_id, code="OLD22222", pin="1111",
                                 created_at=now - timedelta(hours=1)))
    links.insert_link(LinkRecord(id="new", user_id=user_id, code="NEW22222", pin="2222", created_at=now))

    assert links.delete_links_before(now - timedelta(minutes=10)) == 1
    assert links.get_link("NEW22222") is not None


def test_api_keys_and_roles(session_factory, accounts, user_id):
    key = create_api_key(user_id, session_factory=session_factory)
    assert key.startswith("sg-")

    record = accounts.find_api_key(key)
    assert record.user_id == user_id
    assert record.expires_at is None
    assert accounts.find_api_key("sg-unknown") is None


def test_seed_demo_data_is_idempotent(session_factory, accounts):
    created = seed_demo_data(session_factory)
    assert len(created) == len(DEMO_USERS)
    assert seed_demo_data(session_factory) == []

    admin = next(row for row in created if row["email"] == "admin@example.com")
    assert admin["api_key"] == "sg-demo-admin"
    assert [r.elevation for r in accounts.list_roles(admin["user_id"])] == [100]


def test_balance_report(session_factory, user_id):
    record_payment_and_subscribe(user_id, 1, 4, session_factory=session_factory)
    record_payment_and_subscribe(user_id, 2, 0, session_factory=session_factory)

    balance = get_user_balance(user_id, session_factory)
    assert balance["active_credits"] == 4
    assert [s["active"] for s in balance["subscriptions"]] == [True, False]


def test_service_on_sql(session_factory, accounts, user_id, config):
    sub_id = record_payment_and_subscribe(user_id, 1, 2, session_factory=session_factory)
    service = ScreeningService(
        accounts,
        SqlJobStore(session_factory),
        SqlLinkStore(session_factory),
        worker=lambda screening_input: {"file": screening_input.file_name},
        config=config,
    )

    try:
        submission = service.submit(user_id, ScreeningInput(file_name="scan.png"))
        job = service.wait_for(submission.job_id, timeout=5)
    finally:
        service.shutdown()

    assert job.status == JobStatus.DONE
    assert accounts.get_subscription(sub_id).credits == 1
    listed = list_jobs(user_id=user_id, session_factory=session_factory)
    assert [j["status"] for j in listed] == ["DONE"]


def test_service_on_sql_stores_non_json_results(session_factory, accounts, user_id, config):
    sub_id = record_payment_and_subscribe(user_id, 1, 2, session_factory=session_factory)
    jobs = SqlJobStore(session_factory)
    service = ScreeningService(
        accounts,
        jobs,
        SqlLinkStore(session_factory),
        worker=lambda screening_input: {"at": datetime(2026, 1, 1, tzinfo=timezone.utc)},
        config=config,
    )

    try:
        submission = service.submit(user_id, ScreeningInput(file_name="scan.png"))
        job = service.wait_for(submission.job_id, timeout=5)
    finally:
        service.shutdown()

    assert job.status == JobStatus.DONE
    assert job.debug == {"response": {"at": "2026-01-01T00:00:00Z"}}
    assert service.ledger.pending() == []
    assert accounts.get_subscription(sub_id).credits == 1
