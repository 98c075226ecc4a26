"""API key authentication and role elevation.

Callers present a bearer API key; the key resolves to a user id. Roles carry
an integer elevation, wrapped here in a typed, ordered Elevation so privilege
comparisons never pass raw numbers around.

Usage:
    authenticator = ApiKeyAuthenticator(store)
    user_id = authenticator.authenticate(request.headers.get("Authorization"))

    require_elevation(store.list_roles(user_id), Elevation.ADMIN)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ClassVar, Iterable, Optional

from loguru import logger

from .errors import ApiKeyExpired, InsufficientElevation, InvalidApiKey, MissingApiKey
from .schemas import RoleRecord
from .stores.base import AccountStore
from .utils import utcnow

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True, order=True)
class Elevation:
    """Total-ordered privilege level; a higher level implies every lower one."""

    level: int = 0

    NONE: ClassVar["Elevation"]
    USER: ClassVar["Elevation"]
    MODERATOR: ClassVar["Elevation"]
    ADMIN: ClassVar["Elevation"]

    def __str__(self) -> str:
        return str(self.level)


Elevation.NONE = Elevation(0)
Elevation.USER = Elevation(10)
Elevation.MODERATOR = Elevation(50)
Elevation.ADMIN = Elevation(100)


def effective_elevation(roles: Iterable[RoleRecord]) -> Elevation:
    """Highest elevation across a user's roles (NONE without roles)."""
    return max((Elevation(r.elevation) for r in roles), default=Elevation.NONE)


def require_elevation(roles: Iterable[RoleRecord], minimum: Elevation) -> Elevation:
    """Raise InsufficientElevation unless the roles reach `minimum`."""
    current = effective_elevation(roles)
    if current < minimum:
        raise InsufficientElevation(required=minimum.level, current=current.level)
    return current


class ApiKeyAuthenticator:
    def __init__(self, store: AccountStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    def authenticate(self, credential: Optional[str]) -> str:
        """
        Resolve an API key (optionally prefixed with "Bearer ") to a user id.

        Raises:
            MissingApiKey: Nothing was provided
            InvalidApiKey: Unknown key, or a key not attached to a user
            ApiKeyExpired: The key's expiry has passed
        """
        token = (credential or "").strip()
        if token.startswith(BEARER_PREFIX):
            token = token[len(BEARER_PREFIX):].strip()
        if not token:
            raise MissingApiKey()

        api_key = self.store.find_api_key(token)
        if api_key is None or api_key.user_id is None:
            logger.warning("Rejected unknown API key")
            raise InvalidApiKey()

        if api_key.is_expired(self.clock()):
            logger.warning(f"Rejected expired API key {api_key.id} for user {api_key.user_id}")
            raise ApiKeyExpired(key_id=api_key.id)

        return api_key.user_id
