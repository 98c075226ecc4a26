"""SQLAlchemy-backed stores.

Each operation opens its own short transaction through get_db_session, so
stores are safe to share between threads. Records are converted to detached
pydantic models before the session closes.

Credit debits use a single conditional UPDATE:

    UPDATE subscriptions SET credits = credits - :amount
    WHERE id = :id AND credits >= :amount
      AND (expires_at IS NULL OR expires_at > :now)

so two processes sharing the database still cannot overdraw a subscription.
"""

from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..database import (
    ApiKey,
    Link,
    Package,
    Role,
    ScreenResult,
    Subscription,
    get_db_session,
)
from ..errors import StorageUnavailable
from ..schemas import (
    ApiKeyRecord,
    JobRecord,
    JobStatus,
    LinkRecord,
    PackageRecord,
    RoleRecord,
    SubscriptionRecord,
)
from ..utils import as_utc, utcnow
from .base import AccountStore, JobStore, LinkStore

SessionFactory = Callable[[], Session]


def _storage_errors(func):
    """Surface connection-level database failures as StorageUnavailable."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError:
            raise
        except (OperationalError, DBAPIError) as e:
            logger.error(f"Storage failure in {func.__qualname__}: {e}")
            raise StorageUnavailable(f"Storage unavailable: {type(e).__name__}") from e

    return wrapper


class _SqlStore:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)


class SqlAccountStore(_SqlStore, AccountStore):
    @_storage_errors
    def get_subscription(self, subscription_id: int) -> Optional[SubscriptionRecord]:
        with self._session() as db:
            sub = db.get(Subscription, subscription_id)
            return _subscription_to_record(sub) if sub else None

    @_storage_errors
    def list_subscriptions(self, user_id: str) -> List[SubscriptionRecord]:
        with self._session() as db:
            subs = db.query(Subscription).filter(Subscription.user_id == user_id).all()
            return [_subscription_to_record(s) for s in subs]

    @_storage_errors
    def get_package(self, package_id: int) -> Optional[PackageRecord]:
        with self._session() as db:
            package = db.get(Package, package_id)
            if package is None:
                return None
            return PackageRecord(id=package.id, name=package.name, rate_limit=package.rate_limit)

    @_storage_errors
    def try_debit(self, subscription_id: int, amount: int, now: datetime) -> bool:
        with self._session() as db:
            updated = (
                db.query(Subscription)
                .filter(Subscription.id == subscription_id)
                .filter(Subscription.credits >= amount)
                .filter(or_(Subscription.expires_at.is_(None), Subscription.expires_at > now))
                .update(
                    {Subscription.credits: Subscription.credits - amount},
                    synchronize_session=False,
                )
            )
            return updated == 1

    @_storage_errors
    def credit(self, subscription_id: int, amount: int) -> None:
        with self._session() as db:
            (
                db.query(Subscription)
                .filter(Subscription.id == subscription_id)
                .update(
                    {Subscription.credits: Subscription.credits + amount},
                    synchronize_session=False,
                )
            )

    @_storage_errors
    def find_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        with self._session() as db:
            api_key = db.query(ApiKey).filter(ApiKey.key == key).first()
            if api_key is None:
                return None
            return ApiKeyRecord(
                id=api_key.id,
                user_id=api_key.user_id,
                name=api_key.name,
                key=api_key.key,
                created_at=as_utc(api_key.created_at),
                expires_at=as_utc(api_key.expires_at),
            )

    @_storage_errors
    def list_roles(self, user_id: str) -> List[RoleRecord]:
        with self._session() as db:
            roles = db.query(Role).filter(Role.user_id == user_id).all()
            return [
                RoleRecord(id=r.id, user_id=r.user_id, name=r.name, elevation=r.elevation or 0)
                for r in roles
            ]


class SqlJobStore(_SqlStore, JobStore):
    @_storage_errors
    def create_running(self, job_id: str, user_id: Optional[str], file_name: str) -> str:
        now = utcnow()
        with self._session() as db:
            db.add(
                ScreenResult(
                    id=job_id,
                    user_id=user_id,
                    file_name=file_name,
                    status=JobStatus.RUNNING,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.debug(f"Inserted screen_result {job_id} for user {user_id} with status=RUNNING")
        return job_id

    def mark_done(self, job_id: str, debug: Dict[str, Any]) -> None:
        self._set_status(job_id, JobStatus.DONE, debug)

    def mark_error(self, job_id: str, debug: Dict[str, Any]) -> None:
        self._set_status(job_id, JobStatus.ERROR, debug)

    @_storage_errors
    def _set_status(self, job_id: str, status: JobStatus, debug: Dict[str, Any]) -> None:
        with self._session() as db:
            job = db.get(ScreenResult, job_id)
            if job:
                job.status = status
                job.debug = debug
                job.updated_at = utcnow()

    @_storage_errors
    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._session() as db:
            job = db.get(ScreenResult, job_id)
            return _job_to_record(job) if job else None


class SqlLinkStore(_SqlStore, LinkStore):
    def insert_link(self, link: LinkRecord) -> bool:
        try:
            return self._insert(link)
        except IntegrityError:
            logger.debug(f"Link code collision on {link.code}")
            return False

    @_storage_errors
    def _insert(self, link: LinkRecord) -> bool:
        with self._session() as db:
            db.add(
                Link(
                    id=link.id,
                    user_id=link.user_id,
                    code=link.code,
                    pin=link.pin,
                    created_at=link.created_at,
                )
            )
        return True

    @_storage_errors
    def get_link(self, code: str) -> Optional[LinkRecord]:
        with self._session() as db:
            link = db.query(Link).filter(Link.code == code).first()
            if link is None:
                return None
            return LinkRecord(
                id=link.id,
                user_id=link.user_id,
                code=link.code,
                pin=link.pin,
                created_at=as_utc(link.created_at),
            )

    @_storage_errors
    def consume_link(self, code: str) -> bool:
        with self._session() as db:
            deleted = db.query(Link).filter(Link.code == code).delete(synchronize_session=False)
            return deleted == 1

    @_storage_errors
    def delete_links_before(self, cutoff: datetime) -> int:
        with self._session() as db:
            return db.query(Link).filter(Link.created_at <= cutoff).delete(synchronize_session=False)


# ============================================================================
# Helper functions to convert ORM objects to records
# ============================================================================

def _subscription_to_record(sub: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=sub.id,
        user_id=sub.user_id,
        package_id=sub.package_id,
        payment_id=sub.payment_id,
        expires_at=as_utc(sub.expires_at),
        credits=sub.credits,
    )


def _job_to_record(job: ScreenResult) -> JobRecord:
    return JobRecord(
        id=job.id,
        user_id=job.user_id,
        file_name=job.file_name,
        status=JobStatus(job.status),
        debug=job.debug,
        created_at=as_utc(job.created_at),
        updated_at=as_utc(job.updated_at),
    )
