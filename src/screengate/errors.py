"""Error taxonomy for ScreenGate.

Every error raised by the core derives from ScreenGateError and carries a
stable ``code`` so a request layer can map it onto its own responses:

    except ScreenGateError as e:
        return JSONResponse(status_code=403, content=e.to_dict())

Admission errors are terminal for the request that triggered them. Nothing
inside the core retries; resubmitting runs the full admission check again.
"""

from typing import Any, Dict, Optional


class ScreenGateError(Exception):
    """Base class for all ScreenGate errors."""

    code = "SCREENGATE_ERROR"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.detail, "code": self.code}
        if self.context:
            payload.update(self.context)
        return payload


# =============================================================================
# Admission
# =============================================================================

class AdmissionError(ScreenGateError):
    """The job request was rejected before execution."""

    code = "ADMISSION_REJECTED"


class NoActiveSubscription(AdmissionError):
    """No active subscription"""

    code = "NO_ACTIVE_SUBSCRIPTION"


class SubscriptionExpired(AdmissionError):
    """Subscription has expired"""

    code = "SUBSCRIPTION_EXPIRED"


class InsufficientCredits(AdmissionError):
    """No credits available"""

    code = "INSUFFICIENT_CREDITS"


class RateLimited(AdmissionError):
    """Rate limit reached for this package"""

    code = "RATE_LIMITED"


# =============================================================================
# Ledger / jobs
# =============================================================================

class UnknownReservation(ScreenGateError):
    """Reservation token was not issued by this ledger"""

    code = "UNKNOWN_RESERVATION"


class JobNotFound(ScreenGateError):
    """Job not found"""

    code = "JOB_NOT_FOUND"


class InvalidJobTransition(ScreenGateError):
    """Job is not in a state that allows this transition"""

    code = "INVALID_JOB_TRANSITION"


class WorkerFailure(ScreenGateError):
    """Screening worker failed"""

    code = "WORKER_FAILURE"


class WorkerTimeout(WorkerFailure):
    """Screening worker exceeded its time budget"""

    code = "WORKER_TIMEOUT"


class QueueFailure(WorkerFailure):
    """Admitted job could not be queued for execution"""

    code = "QUEUE_FAILED"


class ReconciliationError(ScreenGateError):
    """Job store and ledger could not be reconciled"""

    code = "RECONCILIATION_FAILED"


class ServiceClosed(ScreenGateError):
    """Service is shut down and no longer admits jobs"""

    code = "SERVICE_CLOSED"


# =============================================================================
# Storage
# =============================================================================

class StorageUnavailable(ScreenGateError):
    """Storage backend unavailable"""

    code = "STORAGE_UNAVAILABLE"


class DatabaseConfigError(ScreenGateError):
    """Raised when database configuration is missing or invalid."""

    code = "DATABASE_CONFIG_ERROR"


# =============================================================================
# Pairing
# =============================================================================

class PairingError(ScreenGateError):
    code = "PAIRING_FAILED"


class PairingNotFound(PairingError):
    """Pairing code not found"""

    code = "PAIRING_NOT_FOUND"


class PairingExpired(PairingError):
    """Pairing code has expired"""

    code = "PAIRING_EXPIRED"


class PairingPinMismatch(PairingError):
    """Pairing PIN does not match"""

    code = "PAIRING_PIN_MISMATCH"


# =============================================================================
# Authentication
# =============================================================================

class AuthenticationError(ScreenGateError):
    code = "AUTHENTICATION_FAILED"


class MissingApiKey(AuthenticationError):
    """API key was not provided"""

    code = "API_KEY_MISSING"


class InvalidApiKey(AuthenticationError):
    """Invalid API key"""

    code = "API_KEY_INVALID"


class ApiKeyExpired(AuthenticationError):
    """API key has expired"""

    code = "API_KEY_EXPIRED"


class InsufficientElevation(ScreenGateError):
    """This operation requires a higher role elevation"""

    code = "INSUFFICIENT_ELEVATION"
