"""Job executor for admitted screening jobs.

Admitted jobs run on a fixed-size thread pool. Jobs beyond the pool size
wait in the pool's FIFO queue. Each job runs the opaque screening worker once
(no retries) and then settles both the job record and the credit ledger:

- success: job -> DONE with {"response": ...}, reservation committed
- failure: job -> ERROR with the failure details, reservation refunded

A worker that runs past the timeout counts as a failure. Running workers
cannot be preempted: a timed-out worker thread is abandoned (daemon) and
whatever it eventually returns is discarded.

If the terminal write or the refund fails with StorageUnavailable, the job's
future raises ReconciliationError and the reservation stays pending in the
ledger for an out-of-band audit.
"""

import threading
import traceback
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from loguru import logger
from pydantic_core import to_jsonable_python

from .errors import (
    InvalidJobTransition,
    JobNotFound,
    QueueFailure,
    ReconciliationError,
    StorageUnavailable,
    WorkerFailure,
    WorkerTimeout,
)
from .ledger import CreditLedger
from .schemas import Admission, JobRecord, JobStatus, ScreeningInput
from .stores.base import JobStore

ScreeningWorker = Callable[[ScreeningInput], Any]


class JobExecutor:
    """Runs admitted jobs concurrently under a pool-size cap.

    Attributes:
        max_workers: Maximum number of simultaneously executing jobs
        timeout: Seconds a worker may run before the job fails (None = no limit)
        jobs_processed: Jobs that ended DONE
        jobs_failed: Jobs that ended ERROR
    """

    def __init__(
        self,
        jobs: JobStore,
        ledger: CreditLedger,
        worker: ScreeningWorker,
        max_workers: int = 4,
        timeout: Optional[float] = 120.0,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        self.jobs = jobs
        self.ledger = ledger
        self.worker = worker
        self.max_workers = max_workers
        self.timeout = timeout
        self.jobs_processed = 0
        self.jobs_failed = 0

        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="screen-job")
        self._lock = threading.Lock()
        self._submitted: Set[str] = set()
        self._queued = 0
        self._running = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, admission: Admission, screening_input: ScreeningInput) -> "Future[JobRecord]":
        """
        Queue an admitted job.

        Returns:
            Future resolving to the job's terminal JobRecord

        Raises:
            InvalidJobTransition: This job was already submitted, or has
                already settled
            JobNotFound: No job record exists for the admission
            QueueFailure: The pool refused the job (e.g. after shutdown);
                the job is marked ERROR and its reservation refunded
        """
        job_id = admission.job_id
        self._require_running(job_id)
        with self._lock:
            if job_id in self._submitted:
                raise InvalidJobTransition(job_id=job_id, reason="already submitted")
            self._submitted.add(job_id)
            self._queued += 1

        try:
            future = self._pool.submit(self._run, admission, screening_input)
        except Exception as e:
            with self._lock:
                self._queued -= 1
                self._submitted.discard(job_id)
            failure = QueueFailure(str(e) or type(e).__name__, job_id=job_id, cause=type(e).__name__)
            self._fail(admission, failure)
            raise failure from e

        logger.debug(f"Queued job {job_id} ({self.queued_count} waiting)")
        return future

    @property
    def running_count(self) -> int:
        with self._lock:
            return self._running

    @property
    def queued_count(self) -> int:
        with self._lock:
            return self._queued

    def shutdown(self, wait: bool = True) -> None:
        logger.info(
            f"Executor shutting down (processed={self.jobs_processed}, failed={self.jobs_failed})"
        )
        self._pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, admission: Admission, screening_input: ScreeningInput) -> JobRecord:
        job_id = admission.job_id
        with self._lock:
            self._queued -= 1
            self._running += 1

        try:
            self._require_running(job_id)
            logger.info(f"Processing job: {job_id} (user {admission.user_id})")
            try:
                result = self._call_worker(job_id, screening_input)
            except Exception as e:
                return self._fail(admission, e)
            return self._succeed(admission, result)
        finally:
            with self._lock:
                self._running -= 1
                self._submitted.discard(job_id)

    def _call_worker(self, job_id: str, screening_input: ScreeningInput) -> Any:
        if self.timeout is None:
            return self.worker(screening_input)

        outcome: Future = Future()

        def target():
            if not outcome.set_running_or_notify_cancel():
                return
            try:
                outcome.set_result(self.worker(screening_input))
            except BaseException as e:
                outcome.set_exception(e)

        threading.Thread(target=target, name=f"screen-worker-{job_id[:8]}", daemon=True).start()

        done, _ = wait([outcome], timeout=self.timeout)
        if not done:
            raise WorkerTimeout(
                f"Worker exceeded {self.timeout:g}s",
                job_id=job_id,
                timeout_seconds=self.timeout,
            )
        return outcome.result()

    def _require_running(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id=job_id)
        if job.status is not JobStatus.RUNNING:
            raise InvalidJobTransition(job_id=job_id, current=job.status.value, reason="already settled")

    def _ensure_running(self, job_id: str, target: JobStatus) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id=job_id)
        if not job.status.can_transition_to(target):
            raise InvalidJobTransition(
                job_id=job_id,
                current=job.status.value,
                target=target.value,
            )

    def _succeed(self, admission: Admission, result: Any) -> JobRecord:
        job_id = admission.job_id
        self._ensure_running(job_id, JobStatus.DONE)

        try:
            self.jobs.mark_done(job_id, {"response": _jsonable(result)})
        except StorageUnavailable as e:
            logger.critical(
                f"Job {job_id} finished but DONE could not be written; "
                f"reservation {admission.token.id} left pending"
            )
            raise ReconciliationError(job_id=job_id, token_id=admission.token.id) from e
        except Exception as e:
            return self._fail(
                admission,
                WorkerFailure(f"Result could not be recorded: {e}", cause=type(e).__name__),
            )

        self.ledger.commit(admission.token)
        with self._lock:
            self.jobs_processed += 1

        logger.info(f"Job {job_id} completed successfully")
        return self.jobs.get(job_id)

    def _fail(self, admission: Admission, error: Exception) -> JobRecord:
        job_id = admission.job_id
        if isinstance(error, WorkerFailure):
            failure = error
        else:
            failure = WorkerFailure(str(error) or type(error).__name__, cause=type(error).__name__)

        logger.error(f"Job {job_id} failed: {failure.detail}")
        logger.debug("".join(traceback.format_exception(type(error), error, error.__traceback__)))

        self._ensure_running(job_id, JobStatus.ERROR)

        try:
            self.jobs.mark_error(job_id, failure.to_dict())
            self.ledger.refund(admission.token)
        except StorageUnavailable as e:
            logger.critical(
                f"Job {job_id} failed and could not be reconciled; "
                f"reservation {admission.token.id} left pending"
            )
            raise ReconciliationError(job_id=job_id, token_id=admission.token.id) from e

        with self._lock:
            self.jobs_failed += 1
        return self.jobs.get(job_id)


def _jsonable(result: Any) -> Any:
    """JSON-safe copy of a worker result; unknown types fall back to str()."""
    return to_jsonable_python(result, fallback=str)
