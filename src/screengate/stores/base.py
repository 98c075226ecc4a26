"""Abstract persistence collaborators consumed by the core.

The core never runs SQL itself. It reads records and asks for conditional
updates through these interfaces; any backend error must surface as
StorageUnavailable so callers can tell infrastructure failures apart from
admission decisions.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..schemas import (
    ApiKeyRecord,
    JobRecord,
    LinkRecord,
    PackageRecord,
    RoleRecord,
    SubscriptionRecord,
)


class AccountStore(ABC):
    """Users' entitlements: subscriptions, packages, keys and roles."""

    @abstractmethod
    def get_subscription(self, subscription_id: int) -> Optional[SubscriptionRecord]:
        ...

    @abstractmethod
    def list_subscriptions(self, user_id: str) -> List[SubscriptionRecord]:
        ...

    @abstractmethod
    def get_package(self, package_id: int) -> Optional[PackageRecord]:
        ...

    @abstractmethod
    def try_debit(self, subscription_id: int, amount: int, now: datetime) -> bool:
        """Decrement credits by amount only if unexpired at `now` and credits >= amount.

        Returns True when the row was updated.
        """

    @abstractmethod
    def credit(self, subscription_id: int, amount: int) -> None:
        """Add amount back to the subscription's balance."""

    @abstractmethod
    def find_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        ...

    @abstractmethod
    def list_roles(self, user_id: str) -> List[RoleRecord]:
        ...


class JobStore(ABC):
    """Durable record of screening jobs keyed by job id."""

    @abstractmethod
    def create_running(self, job_id: str, user_id: Optional[str], file_name: str) -> str:
        ...

    @abstractmethod
    def mark_done(self, job_id: str, debug: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def mark_error(self, job_id: str, debug: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        ...


class LinkStore(ABC):
    """Pairing links keyed by their code."""

    @abstractmethod
    def insert_link(self, link: LinkRecord) -> bool:
        """Store a link; False if the code is already taken."""

    @abstractmethod
    def get_link(self, code: str) -> Optional[LinkRecord]:
        ...

    @abstractmethod
    def consume_link(self, code: str) -> bool:
        """Delete the link; True only for the caller that actually removed it."""

    @abstractmethod
    def delete_links_before(self, cutoff: datetime) -> int:
        ...
