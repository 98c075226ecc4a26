"""Record types shared by the stores, the ledger and the executor.

These are plain pydantic models detached from any database session, so the
core never holds an ORM object across threads.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Closed set of screening job states."""

    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING

    def can_transition_to(self, target: "JobStatus") -> bool:
        """RUNNING moves to DONE or ERROR exactly once; terminal states never move."""
        return self is JobStatus.RUNNING and target.is_terminal


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class PackageRecord(_Record):
    id: int
    name: str
    rate_limit: int = Field(default=0, ge=0)  # requests per window, 0 = unlimited


class SubscriptionRecord(_Record):
    id: int
    user_id: Optional[str] = None
    package_id: Optional[int] = None
    payment_id: Optional[str] = None
    expires_at: Optional[datetime] = None  # None = never expires
    credits: int = Field(default=0, ge=0)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not self.is_expired(now) and self.credits > 0


class RoleRecord(_Record):
    id: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    elevation: int = 0


class ApiKeyRecord(_Record):
    id: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    key: str
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class JobRecord(_Record):
    id: str
    user_id: Optional[str] = None
    file_name: str
    status: JobStatus = JobStatus.RUNNING
    debug: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LinkRecord(_Record):
    id: str
    user_id: Optional[str] = None
    code: str
    pin: str
    created_at: datetime


class ScreeningInput(_Record):
    """What a caller hands in for screening: an uploaded file and its type."""

    file_name: str
    content: bytes = b""
    mime_type: str = "image/png"


class ReservationToken(_Record):
    """Handle on a provisional credit debit, resolved later by commit or refund."""

    id: str
    subscription_id: int
    amount: int = Field(gt=0)
    created_at: datetime


class Admission(_Record):
    """Result of a successful admission: the job exists and credits are held."""

    job_id: str
    user_id: str
    subscription_id: int
    token: ReservationToken
    status: JobStatus = JobStatus.RUNNING


class JobSubmission(_Record):
    job_id: str
    status: JobStatus
