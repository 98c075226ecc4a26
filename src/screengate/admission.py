"""Admission control for screening jobs.

For every job request, in order:

1. Resolve the caller's active subscription and its package
2. Check the package rate limit (cheap, no balance mutation)
3. Reserve the job's cost on the subscription
4. Create the job record in RUNNING state

A rejection at any step leaves nothing behind: later steps undo what the
earlier ones recorded (rate slot released, credits refunded) before the error
propagates.
"""

from typing import Callable, Optional

from loguru import logger

from .errors import NoActiveSubscription, RateLimited, ScreenGateError
from .ledger import CreditLedger
from .rate_limiter import RateLimiter
from .schemas import Admission, JobStatus, PackageRecord, SubscriptionRecord
from .stores.base import AccountStore, JobStore
from .utils import new_id


class AdmissionController:
    """Accepts or rejects job requests against credits and rate limits.

    Attributes:
        window: Rate window length in seconds for every package
        default_cost: Credits charged per job when no cost function is given
    """

    def __init__(
        self,
        accounts: AccountStore,
        jobs: JobStore,
        ledger: CreditLedger,
        limiter: RateLimiter,
        window: float = 60.0,
        default_cost: int = 1,
        cost_of: Optional[Callable[[str], int]] = None,
    ):
        self.accounts = accounts
        self.jobs = jobs
        self.ledger = ledger
        self.limiter = limiter
        self.window = window
        self.default_cost = default_cost
        self.cost_of = cost_of

    def resolve_subscription(self, user_id: str) -> SubscriptionRecord:
        """
        Pick the subscription admission draws from.

        Among active subscriptions (unexpired, credits > 0) the one expiring
        soonest is used, so dated credits are spent before they lapse.

        Raises:
            NoActiveSubscription: The user has no active subscription
        """
        now = self.ledger.clock()
        active = [s for s in self.accounts.list_subscriptions(user_id) if s.is_active(now)]
        if not active:
            raise NoActiveSubscription(user_id=user_id)

        def expiry_key(sub: SubscriptionRecord):
            if sub.expires_at is None:
                return (1, 0.0, sub.id)
            return (0, sub.expires_at.timestamp(), sub.id)

        return min(active, key=expiry_key)

    def _package_for(self, sub: SubscriptionRecord) -> PackageRecord:
        package = self.accounts.get_package(sub.package_id) if sub.package_id is not None else None
        if package is None:
            logger.warning(f"Subscription {sub.id} has no package; treating it as inactive")
            raise NoActiveSubscription(subscription_id=sub.id)
        return package

    def _cost(self, file_name: str) -> int:
        cost = self.cost_of(file_name) if self.cost_of else self.default_cost
        if cost <= 0:
            raise ValueError(f"Job cost must be positive, got {cost}")
        return cost

    def admit(self, user_id: str, file_name: str, cost: Optional[int] = None) -> Admission:
        """
        Run the full admission check and, on success, create the RUNNING job.

        Args:
            user_id: Caller's user id
            file_name: Input reference stored on the job
            cost: Credits to charge, defaults to the configured cost

        Returns:
            Admission binding the new job id to its reservation token

        Raises:
            NoActiveSubscription, RateLimited, InsufficientCredits,
            SubscriptionExpired, StorageUnavailable
        """
        sub = self.resolve_subscription(user_id)
        package = self._package_for(sub)
        amount = cost if cost is not None else self._cost(file_name)

        slot = self.limiter.acquire(user_id, package.rate_limit, self.window)
        if slot is None:
            logger.warning(
                f"User {user_id} hit rate limit: {package.rate_limit}/{self.window:g}s "
                f"(package {package.name})"
            )
            raise RateLimited(
                user_id=user_id,
                package=package.name,
                limit={"requests": package.rate_limit, "window_seconds": self.window},
            )

        try:
            token = self.ledger.reserve(sub.id, amount)
        except ScreenGateError as e:
            self.limiter.release(slot)
            logger.warning(f"User {user_id} rejected on subscription {sub.id}: {e.code}")
            raise
        except Exception:
            self.limiter.release(slot)
            raise

        job_id = new_id()
        try:
            self.jobs.create_running(job_id, user_id, file_name)
        except Exception:
            logger.error(f"Could not create job for user {user_id}; undoing reservation {token.id}")
            try:
                self.ledger.refund(token)
            finally:
                self.limiter.release(slot)
            raise

        logger.info(
            f"Admitted job {job_id} for user {user_id} "
            f"(subscription {sub.id}, cost {amount}, package {package.name})"
        )
        return Admission(
            job_id=job_id,
            user_id=user_id,
            subscription_id=sub.id,
            token=token,
            status=JobStatus.RUNNING,
        )
