"""SQLAlchemy ORM models for ScreenGate.

Tables:
- users: Account identity and confirmation flag
- roles: Named privilege levels (elevation) attached to users
- packages: Reference data with the per-window rate limit
- payments: Write-once payment records
- subscriptions: Credit-bearing entitlement tying a user to a package
- screen_results: Screening jobs (RUNNING -> DONE / ERROR) and their debug payload
- links: Short-lived code+PIN pairing grants
- keys: Bearer API keys

Ownership:
User is the root aggregate. Every other table references users through a
nullable user_id (SET NULL on delete) except packages and payments, which are
independent reference data.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..schemas import JobStatus

Base = declarative_base()

# BIGINT autoincrement only works on SQLite as INTEGER PRIMARY KEY
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class User(Base):
    """User account."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(190), nullable=False, unique=True)
    password = Column(String(190), nullable=False)  # credential hash, produced upstream
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    confirmed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    roles = relationship("Role", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")
    api_keys = relationship("ApiKey", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, confirmed={self.confirmed})>"


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(64), nullable=True)
    elevation = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    user = relationship("User", back_populates="roles")

    __table_args__ = (Index("idx_roles_user_id", "user_id"),)

    def __repr__(self):
        return f"<Role(id={self.id}, user_id={self.user_id}, name={self.name}, elevation={self.elevation})>"


class Package(Base):
    """Immutable reference data: rate_limit requests per window, 0 = unlimited."""

    __tablename__ = "packages"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    rate_limit = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Package(id={self.id}, name={self.name}, rate_limit={self.rate_limit})>"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True)
    transaction_id = Column(String(128), nullable=True, unique=True)
    currency = Column(String(8), nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Payment(id={self.id}, transaction_id={self.transaction_id}, price={self.price} {self.currency})>"


class Subscription(Base):
    """Credit-bearing subscription.

    credits never goes negative: the only writer is the ledger's conditional
    UPDATE. expires_at is set at creation; renewal inserts a new row. NULL
    expires_at means the subscription never expires.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    payment_id = Column(String(36), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, unique=True)
    package_id = Column(BigIntId, ForeignKey("packages.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    user = relationship("User", back_populates="subscriptions")
    package = relationship("Package")

    __table_args__ = (
        Index("idx_subscriptions_user_id", "user_id"),
        Index("idx_subscriptions_user_expires", "user_id", "expires_at"),
        CheckConstraint("credits >= 0", name="ck_subscriptions_credits_non_negative"),
    )

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, package_id={self.package_id}, credits={self.credits}, expires_at={self.expires_at})>"


class ScreenResult(Base):
    """Screening job.

    Status lifecycle: RUNNING -> DONE / ERROR. Transitions are enforced by the
    executor, not here.
    """

    __tablename__ = "screen_results"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    file_name = Column(String(255), nullable=False)
    debug = Column(JSON, nullable=True)
    status = Column(
        Enum(JobStatus, name="screen_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.RUNNING,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_screen_results_user_id", "user_id"),
        Index("idx_screen_results_status", "status"),
    )

    def __repr__(self):
        return f"<ScreenResult(id={self.id}, user_id={self.user_id}, status={self.status})>"


class Link(Base):
    """Single-use pairing grant (code + 4-digit PIN)."""

    __tablename__ = "links"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    code = Column(String(64), nullable=False, unique=True)
    pin = Column(String(4), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_links_created_at", "created_at"),)

    def __repr__(self):
        return f"<Link(id={self.id}, user_id={self.user_id}, code={self.code})>"


class ApiKey(Base):
    __tablename__ = "keys"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(64), nullable=True)
    key = Column(String(512), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="api_keys")

    def __repr__(self):
        return f"<ApiKey(id={self.id}, user_id={self.user_id}, name={self.name})>"
