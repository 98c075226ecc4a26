"""Screening service: the single entry point for a request layer.

Wires the stores, ledger, rate limiter, admission controller, executor and
pairing service together from Config.

Usage:
    service = ScreeningService.from_config(worker=run_screening)

    submission = service.submit_with_key(auth_header, ScreeningInput(file_name="a.png"))
    job = service.get_job(submission.job_id)
"""

from concurrent.futures import Future
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from .admission import AdmissionController
from .auth import ApiKeyAuthenticator
from .config import Config, get_config
from .errors import JobNotFound, ServiceClosed
from .executor import JobExecutor, ScreeningWorker
from .ledger import CreditLedger
from .pairing import PairingService
from .rate_limiter import RateLimiter
from .schemas import JobRecord, JobSubmission, ScreeningInput
from .stores.base import AccountStore, JobStore, LinkStore


class ScreeningService:
    def __init__(
        self,
        accounts: AccountStore,
        jobs: JobStore,
        links: LinkStore,
        worker: ScreeningWorker,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Optional[Callable[[], float]] = None,
        cost_of: Optional[Callable[[str], int]] = None,
    ):
        config = config or get_config()
        self.config = config
        self.accounts = accounts
        self.jobs = jobs

        self.ledger = CreditLedger(
            accounts,
            clock=clock,
            resolved_cache_size=config.sg_resolved_token_cache,
        )
        self.limiter = RateLimiter(clock=monotonic)
        self.admission = AdmissionController(
            accounts,
            jobs,
            self.ledger,
            self.limiter,
            window=config.sg_rate_window_seconds,
            default_cost=config.sg_job_cost,
            cost_of=cost_of,
        )
        self.executor = JobExecutor(
            jobs,
            self.ledger,
            worker,
            max_workers=config.sg_max_concurrent_jobs,
            timeout=config.sg_job_timeout_seconds,
        )
        self.pairing = PairingService(links, ttl_seconds=config.sg_link_ttl_seconds, clock=clock)
        self.authenticator = ApiKeyAuthenticator(accounts, clock=clock)
        self._futures: Dict[str, Future] = {}
        self._closed = False

    @classmethod
    def from_config(cls, worker: ScreeningWorker, config: Optional[Config] = None) -> "ScreeningService":
        """Build a service on the configured database."""
        from .stores.sql import SqlAccountStore, SqlJobStore, SqlLinkStore

        return cls(SqlAccountStore(), SqlJobStore(), SqlLinkStore(), worker, config=config)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def submit(self, user_id: str, screening_input: ScreeningInput) -> JobSubmission:
        """
        Admit and queue a screening job.

        Returns:
            JobSubmission with the new job id and status RUNNING

        Raises:
            ServiceClosed: shutdown() was called
            Any AdmissionError, StorageUnavailable, or QueueFailure if the
            admitted job could not be queued (it is refunded and marked ERROR)
        """
        if self._closed:
            raise ServiceClosed()
        admission = self.admission.admit(user_id, screening_input.file_name)
        future = self.executor.submit(admission, screening_input)
        self._futures[admission.job_id] = future
        future.add_done_callback(lambda _: self._futures.pop(admission.job_id, None))
        return JobSubmission(job_id=admission.job_id, status=admission.status)

    def submit_with_key(self, credential: Optional[str], screening_input: ScreeningInput) -> JobSubmission:
        user_id = self.authenticator.authenticate(credential)
        return self.submit(user_id, screening_input)

    def get_job(self, job_id: str) -> JobRecord:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id=job_id)
        return job

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> JobRecord:
        """Block until an in-flight job settles, then return its record."""
        future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_job(job_id)

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    def issue_link(self, user_id: str) -> Tuple[str, str]:
        return self.pairing.issue_link(user_id)

    def redeem_link(self, code: str, pin: str) -> str:
        return self.pairing.redeem(code, pin)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge(self) -> Dict[str, int]:
        """Drop expired pairing links and idle rate-limit windows."""
        return {
            "links": self.pairing.purge_expired(),
            "rate_windows": self.limiter.purge_idle(),
        }

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self.executor.shutdown(wait=wait)
        remaining = self.ledger.pending()
        if remaining:
            logger.warning(f"{len(remaining)} reservations left unresolved; audit required")
