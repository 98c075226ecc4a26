"""Account and reporting operations on the SQL database.

These helpers cover the write paths that sit outside the admission core
(recording a payment and opening its subscription, issuing API keys) plus
read-only reporting used by the CLI.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import desc
from sqlalchemy.orm import Session

from .database import (
    ApiKey,
    Package,
    Payment,
    Role,
    ScreenResult,
    Subscription,
    User,
    get_db_session,
)
from .utils import as_utc, new_id, utcnow

SessionFactory = Optional[Callable[[], Session]]

# Reference packages: requests per rate window
DEFAULT_PACKAGES = [
    (1, "Free", 60),
    (2, "Pro", 600),
]

# email, role, elevation, package id, credits
DEMO_USERS = [
    ("user@example.com", "user", 10, 1, 10),
    ("admin@example.com", "admin", 100, 2, 200),
    ("mod@example.com", "mod", 50, 1, 50),
]

DEMO_SUBSCRIPTION_DAYS = 30


def ensure_packages(session_factory: SessionFactory = None) -> int:
    """Insert the reference packages that are missing. Returns how many were added."""
    added = 0
    with get_db_session(session_factory) as db:
        for package_id, name, rate_limit in DEFAULT_PACKAGES:
            if db.get(Package, package_id) is None:
                db.add(Package(id=package_id, name=name, rate_limit=rate_limit))
                added += 1
    return added


def create_user(
    email: str,
    password_hash: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    confirmed: bool = False,
    session_factory: SessionFactory = None,
) -> str:
    """Create a user and return its id. The credential must already be hashed."""
    user_id = new_id()
    with get_db_session(session_factory) as db:
        db.add(
            User(
                id=user_id,
                email=email,
                password=password_hash,
                first_name=first_name,
                last_name=last_name,
                confirmed=confirmed,
            )
        )
    logger.info(f"Created user {user_id} ({email})")
    return user_id


def add_role(user_id: str, name: str, elevation: int, session_factory: SessionFactory = None) -> str:
    role_id = new_id()
    with get_db_session(session_factory) as db:
        db.add(Role(id=role_id, user_id=user_id, name=name, elevation=elevation))
    return role_id


def create_api_key(
    user_id: str,
    name: str = "default",
    key: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
    session_factory: SessionFactory = None,
) -> str:
    """Issue an API key for a user and return the key material."""
    key = key or f"sg-{new_id().replace('-', '')}"
    expires_at = utcnow() + expires_in if expires_in else None
    with get_db_session(session_factory) as db:
        db.add(ApiKey(id=new_id(), user_id=user_id, name=name, key=key, expires_at=expires_at))
    logger.info(f"Issued API key '{name}' for user {user_id}")
    return key


def record_payment_and_subscribe(
    user_id: str,
    package_id: int,
    credits: int,
    days: Optional[int] = DEMO_SUBSCRIPTION_DAYS,
    transaction_id: Optional[str] = None,
    currency: Optional[str] = None,
    price: Optional[Decimal] = None,
    session_factory: SessionFactory = None,
) -> int:
    """
    Record a payment and open the subscription it pays for.

    Renewal always opens a new subscription row; existing rows keep their
    expiry.

    Args:
        user_id: Subscriber
        package_id: Package the subscription draws its rate limit from
        credits: Initial credit balance
        days: Validity in days, None for a subscription that never expires

    Returns:
        New subscription id
    """
    if credits < 0:
        raise ValueError(f"credits must be >= 0, got {credits}")

    payment_id = new_id()
    expires_at = utcnow() + timedelta(days=days) if days is not None else None

    with get_db_session(session_factory) as db:
        db.add(Payment(id=payment_id, transaction_id=transaction_id, currency=currency, price=price))
        db.flush()
        sub = Subscription(
            user_id=user_id,
            payment_id=payment_id,
            package_id=package_id,
            expires_at=expires_at,
            credits=credits,
        )
        db.add(sub)
        db.flush()
        subscription_id = sub.id

    logger.info(
        f"Opened subscription {subscription_id} for user {user_id}: "
        f"package={package_id}, credits={credits}, expires_at={expires_at}"
    )
    return subscription_id


def seed_demo_data(session_factory: SessionFactory = None) -> List[Dict]:
    """
    Create the reference packages and a demo user per role.

    Each demo user gets a role, an API key ("sg-demo-<role>") and a 30 day
    subscription. Users that already exist are left untouched.

    Returns:
        List of {"email", "user_id", "api_key"} for the users created
    """
    ensure_packages(session_factory)

    created = []
    for email, role_name, elevation, package_id, credits in DEMO_USERS:
        with get_db_session(session_factory) as db:
            exists = db.query(User).filter(User.email == email).first() is not None
        if exists:
            logger.debug(f"Demo user {email} already present")
            continue

        user_id = create_user(email, "changeme", "Test", role_name.title(), confirmed=True,
                              session_factory=session_factory)
        add_role(user_id, role_name, elevation, session_factory=session_factory)
        api_key = create_api_key(user_id, key=f"sg-demo-{role_name}", session_factory=session_factory)
        record_payment_and_subscribe(user_id, package_id, credits, session_factory=session_factory)
        created.append({"email": email, "user_id": user_id, "api_key": api_key})

    logger.info(f"Seeded {len(created)} demo users")
    return created


# ============================================================================
# Reporting
# ============================================================================

def get_user_balance(user_id: str, session_factory: SessionFactory = None) -> Dict:
    """
    Summarize a user's subscriptions.

    Returns:
        {"user_id", "active_credits", "subscriptions": [...]} where
        active_credits sums only subscriptions that are currently active
    """
    now = utcnow()
    with get_db_session(session_factory) as db:
        subs = (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.id)
            .all()
        )
        rows = []
        for sub in subs:
            expires_at = as_utc(sub.expires_at)
            active = (expires_at is None or expires_at > now) and sub.credits > 0
            rows.append(
                {
                    "id": sub.id,
                    "package": sub.package.name if sub.package else None,
                    "credits": sub.credits,
                    "expires_at": expires_at.isoformat() if expires_at else None,
                    "active": active,
                }
            )

    return {
        "user_id": user_id,
        "active_credits": sum(r["credits"] for r in rows if r["active"]),
        "subscriptions": rows,
    }


def list_jobs(user_id: Optional[str] = None, limit: int = 10, session_factory: SessionFactory = None) -> List[Dict]:
    """List recent screening jobs, newest first."""
    with get_db_session(session_factory) as db:
        query = db.query(ScreenResult)
        if user_id:
            query = query.filter(ScreenResult.user_id == user_id)
        jobs = query.order_by(desc(ScreenResult.created_at)).limit(limit).all()
        return [_job_to_dict(j) for j in jobs]


def _job_to_dict(job: ScreenResult) -> Dict:
    """Convert ScreenResult ORM object to dictionary."""
    created_at = as_utc(job.created_at)
    updated_at = as_utc(job.updated_at)
    return {
        "id": job.id,
        "user_id": job.user_id,
        "file_name": job.file_name,
        "status": job.status.value if job.status else None,
        "debug": job.debug,
        "created_at": created_at.isoformat() if created_at else None,
        "updated_at": updated_at.isoformat() if updated_at else None,
    }
