"""In-memory stores.

Thread-safe implementation of every store interface, used by tests and by
embedders that do not need durability. One lock guards all tables; each
operation is a short critical section so the per-key locks in the ledger and
rate limiter remain the real concurrency boundary.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..schemas import (
    ApiKeyRecord,
    JobRecord,
    JobStatus,
    LinkRecord,
    PackageRecord,
    RoleRecord,
    SubscriptionRecord,
)
from ..utils import utcnow
from .base import AccountStore, JobStore, LinkStore


class MemoryStore(AccountStore, JobStore, LinkStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.packages: Dict[int, PackageRecord] = {}
        self.subscriptions: Dict[int, SubscriptionRecord] = {}
        self.api_keys: Dict[str, ApiKeyRecord] = {}
        self.roles: Dict[str, RoleRecord] = {}
        self.jobs: Dict[str, JobRecord] = {}
        self.links: Dict[str, LinkRecord] = {}

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def add_package(self, package: PackageRecord) -> PackageRecord:
        with self._lock:
            self.packages[package.id] = package
        return package

    def add_subscription(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        with self._lock:
            self.subscriptions[subscription.id] = subscription
        return subscription

    def add_api_key(self, api_key: ApiKeyRecord) -> ApiKeyRecord:
        with self._lock:
            self.api_keys[api_key.key] = api_key
        return api_key

    def add_role(self, role: RoleRecord) -> RoleRecord:
        with self._lock:
            self.roles[role.id] = role
        return role

    # ------------------------------------------------------------------
    # AccountStore
    # ------------------------------------------------------------------

    def get_subscription(self, subscription_id: int) -> Optional[SubscriptionRecord]:
        with self._lock:
            return self.subscriptions.get(subscription_id)

    def list_subscriptions(self, user_id: str) -> List[SubscriptionRecord]:
        with self._lock:
            return [s for s in self.subscriptions.values() if s.user_id == user_id]

    def get_package(self, package_id: int) -> Optional[PackageRecord]:
        with self._lock:
            return self.packages.get(package_id)

    def try_debit(self, subscription_id: int, amount: int, now: datetime) -> bool:
        with self._lock:
            sub = self.subscriptions.get(subscription_id)
            if sub is None or sub.is_expired(now) or sub.credits < amount:
                return False
            self.subscriptions[subscription_id] = sub.model_copy(
                update={"credits": sub.credits - amount}
            )
            return True

    def credit(self, subscription_id: int, amount: int) -> None:
        with self._lock:
            sub = self.subscriptions.get(subscription_id)
            if sub is None:
                return
            self.subscriptions[subscription_id] = sub.model_copy(
                update={"credits": sub.credits + amount}
            )

    def find_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        with self._lock:
            return self.api_keys.get(key)

    def list_roles(self, user_id: str) -> List[RoleRecord]:
        with self._lock:
            return [r for r in self.roles.values() if r.user_id == user_id]

    # ------------------------------------------------------------------
    # JobStore
    # ------------------------------------------------------------------

    def create_running(self, job_id: str, user_id: Optional[str], file_name: str) -> str:
        now = utcnow()
        with self._lock:
            if job_id in self.jobs:
                raise ValueError(f"Job {job_id} already exists")
            self.jobs[job_id] = JobRecord(
                id=job_id,
                user_id=user_id,
                file_name=file_name,
                status=JobStatus.RUNNING,
                created_at=now,
                updated_at=now,
            )
        return job_id

    def mark_done(self, job_id: str, debug: Dict[str, Any]) -> None:
        self._set_status(job_id, JobStatus.DONE, debug)

    def mark_error(self, job_id: str, debug: Dict[str, Any]) -> None:
        self._set_status(job_id, JobStatus.ERROR, debug)

    def _set_status(self, job_id: str, status: JobStatus, debug: Dict[str, Any]) -> None:
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None:
                return
            self.jobs[job_id] = job.model_copy(
                update={"status": status, "debug": debug, "updated_at": utcnow()}
            )

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self.jobs.get(job_id)

    # ------------------------------------------------------------------
    # LinkStore
    # ------------------------------------------------------------------

    def insert_link(self, link: LinkRecord) -> bool:
        with self._lock:
            if link.code in self.links:
                return False
            self.links[link.code] = link
            return True

    def get_link(self, code: str) -> Optional[LinkRecord]:
        with self._lock:
            return self.links.get(code)

    def consume_link(self, code: str) -> bool:
        with self._lock:
            return self.links.pop(code, None) is not None

    def delete_links_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [code for code, link in self.links.items() if link.created_at <= cutoff]
            for code in stale:
                del self.links[code]
            return len(stale)
