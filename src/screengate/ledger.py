"""Credit ledger: reserve, commit and refund credits per subscription.

Credits are debited when a job is admitted, not when it finishes. A burst of
concurrent requests therefore cannot all pass a stale balance check before
any of them pays. Each debit yields a single-use ReservationToken that is
later resolved exactly once:

- commit(token): the job delivered, the debit stands
- refund(token): the job failed, the amount goes back to the balance

Reserve is a critical section per subscription id (read, check, conditional
debit). Unrelated subscriptions never contend.
"""

import threading
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from .errors import (
    InsufficientCredits,
    NoActiveSubscription,
    SubscriptionExpired,
    UnknownReservation,
)
from .schemas import ReservationToken
from .stores.base import AccountStore
from .utils import KeyedLock, new_id, utcnow


class ReservationState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    REFUNDED = "refunded"


class CreditLedger:
    """Tracks reservations against subscriptions held in an AccountStore.

    Attributes:
        store: Persistence collaborator holding the balances
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        store: AccountStore,
        clock: Optional[Callable[[], datetime]] = None,
        resolved_cache_size: int = 10_000,
    ):
        self.store = store
        self.clock = clock or utcnow
        self._locks = KeyedLock()
        self._tokens_guard = threading.Lock()
        self._pending: Dict[str, ReservationToken] = {}
        self._resolved: "OrderedDict[str, ReservationState]" = OrderedDict()
        self._resolved_cache_size = resolved_cache_size

    def reserve(self, subscription_id: int, amount: int) -> ReservationToken:
        """
        Debit `amount` credits from a subscription and return a token for it.

        Args:
            subscription_id: Subscription to debit
            amount: Positive number of credits

        Returns:
            ReservationToken to be committed or refunded later

        Raises:
            NoActiveSubscription: The subscription does not exist
            SubscriptionExpired: expires_at is not in the future
            InsufficientCredits: Balance is lower than amount
        """
        if amount <= 0:
            raise ValueError(f"Reservation amount must be positive, got {amount}")

        with self._locks.hold(subscription_id):
            now = self.clock()
            sub = self.store.get_subscription(subscription_id)
            self._check(subscription_id, sub, amount, now)

            if not self.store.try_debit(subscription_id, amount, now):
                # Lost to a writer outside this process; classify from fresh state
                sub = self.store.get_subscription(subscription_id)
                self._check(subscription_id, sub, amount, now)
                raise InsufficientCredits(subscription_id=subscription_id, requested=amount)

            token = ReservationToken(
                id=new_id(),
                subscription_id=subscription_id,
                amount=amount,
                created_at=now,
            )
            with self._tokens_guard:
                self._pending[token.id] = token

        logger.debug(
            f"Reserved {amount} credits on subscription {subscription_id} "
            f"(token {token.id}, {sub.credits - amount} left)"
        )
        return token

    @staticmethod
    def _check(subscription_id, sub, amount: int, now: datetime) -> None:
        if sub is None:
            raise NoActiveSubscription(subscription_id=subscription_id)
        if sub.is_expired(now):
            raise SubscriptionExpired(
                subscription_id=subscription_id,
                expires_at=sub.expires_at.isoformat(),
            )
        if sub.credits < amount:
            raise InsufficientCredits(
                subscription_id=subscription_id,
                requested=amount,
                available=sub.credits,
            )

    def commit(self, token: ReservationToken) -> bool:
        """Finalize a reservation. Returns False if it was already resolved."""
        with self._locks.hold(token.subscription_id):
            if not self._resolve(token, ReservationState.COMMITTED):
                return False

        logger.debug(f"Committed token {token.id} ({token.amount} credits)")
        return True

    def refund(self, token: ReservationToken) -> bool:
        """
        Return a reservation's credits to its subscription, at most once.

        Returns:
            True if credits were returned, False if the token was already
            committed or refunded

        Raises:
            UnknownReservation: The token was not issued by this ledger
            StorageUnavailable: The credit could not be written; the token
                stays pending so it can be retried or audited
        """
        with self._locks.hold(token.subscription_id):
            if not self._is_pending(token):
                return False
            self.store.credit(token.subscription_id, token.amount)
            self._resolve(token, ReservationState.REFUNDED)

        logger.info(
            f"Refunded {token.amount} credits to subscription {token.subscription_id} "
            f"(token {token.id})"
        )
        return True

    def _is_pending(self, token: ReservationToken) -> bool:
        with self._tokens_guard:
            if token.id in self._pending:
                return True
            if token.id in self._resolved:
                return False
        raise UnknownReservation(token_id=token.id)

    def _resolve(self, token: ReservationToken, state: ReservationState) -> bool:
        if not self._is_pending(token):
            return False

        with self._tokens_guard:
            del self._pending[token.id]
            self._resolved[token.id] = state
            while len(self._resolved) > self._resolved_cache_size:
                self._resolved.popitem(last=False)
        return True

    def state_of(self, token: ReservationToken) -> ReservationState:
        with self._tokens_guard:
            if token.id in self._pending:
                return ReservationState.PENDING
            if token.id in self._resolved:
                return self._resolved[token.id]
        raise UnknownReservation(token_id=token.id)

    def pending(self) -> List[ReservationToken]:
        """Outstanding reservations, oldest first (input to a reconciliation audit)."""
        with self._tokens_guard:
            return sorted(self._pending.values(), key=lambda t: t.created_at)

    def balance(self, subscription_id: int) -> int:
        sub = self.store.get_subscription(subscription_id)
        if sub is None:
            raise NoActiveSubscription(subscription_id=subscription_id)
        return sub.credits
