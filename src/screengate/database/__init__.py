"""Database package for ScreenGate - SQLAlchemy models, engine and sessions.

Job lifecycle: the `screen_results` table holds every screening job.
Status lifecycle: RUNNING -> DONE / ERROR
"""

from .config import get_database_url, create_db_engine, get_engine
from .models import (
    Base,
    User,
    Role,
    Package,
    Payment,
    Subscription,
    ScreenResult,
    Link,
    ApiKey,
)
from .session import (
    get_db_session,
    get_session_factory,
    make_session_factory,
    reset_session_factory,
    SessionLocal,
    init_db,
    check_db_connection,
)

__all__ = [
    # Config
    "get_database_url",
    "create_db_engine",
    "get_engine",
    # Models
    "Base",
    "User",
    "Role",
    "Package",
    "Payment",
    "Subscription",
    "ScreenResult",
    "Link",
    "ApiKey",
    # Session management
    "get_db_session",
    "get_session_factory",
    "make_session_factory",
    "reset_session_factory",
    "SessionLocal",
    "init_db",
    "check_db_connection",
]
