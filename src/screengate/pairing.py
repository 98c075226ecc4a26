"""Device pairing through short-lived code + PIN links.

A signed-in device asks for a link, shows the code and PIN, and the new
device redeems them to attach itself to the same user. Links are single use
and expire after a fixed TTL.
"""

import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from loguru import logger

from .errors import PairingExpired, PairingNotFound, PairingPinMismatch
from .schemas import LinkRecord
from .stores.base import LinkStore
from .utils import new_id, utcnow

# No 0/O or 1/I so codes survive being read aloud or retyped
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
PIN_LENGTH = 4
MAX_CODE_ATTEMPTS = 10


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_pin() -> str:
    return f"{secrets.randbelow(10 ** PIN_LENGTH):0{PIN_LENGTH}d}"


class PairingService:
    def __init__(
        self,
        store: LinkStore,
        ttl_seconds: float = 600.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or utcnow

    def issue_link(self, user_id: str) -> Tuple[str, str]:
        """
        Create a pairing link for a user.

        Returns:
            (code, pin) to hand to the device being paired
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            link = LinkRecord(
                id=new_id(),
                user_id=user_id,
                code=generate_code(),
                pin=generate_pin(),
                created_at=self.clock(),
            )
            if self.store.insert_link(link):
                logger.info(f"Issued pairing link for user {user_id} (expires in {self.ttl})")
                return link.code, link.pin

        raise RuntimeError(f"Could not allocate a unique pairing code after {MAX_CODE_ATTEMPTS} attempts")

    def redeem(self, code: str, pin: str) -> str:
        """
        Redeem a code + PIN and return the user it pairs with.

        A wrong PIN leaves the link usable until it expires. Exactly one of
        any number of concurrent correct redemptions succeeds.

        Raises:
            PairingNotFound: Unknown or already consumed code
            PairingExpired: The link is older than the TTL (and is removed)
            PairingPinMismatch: The PIN does not match
        """
        link = self.store.get_link(code)
        if link is None:
            raise PairingNotFound(code=code)

        if self.clock() - link.created_at >= self.ttl:
            self.store.consume_link(code)
            logger.info(f"Pairing code {code} expired; removed")
            raise PairingExpired(code=code)

        if not secrets.compare_digest(link.pin, pin):
            logger.warning(f"PIN mismatch for pairing code {code}")
            raise PairingPinMismatch(code=code)

        if not self.store.consume_link(code):
            raise PairingNotFound("Pairing code already redeemed", code=code)

        logger.info(f"Pairing code {code} redeemed for user {link.user_id}")
        return link.user_id

    def purge_expired(self) -> int:
        """Delete every link past its TTL. Returns how many were removed."""
        removed = self.store.delete_links_before(self.clock() - self.ttl)
        if removed:
            logger.info(f"Purged {removed} expired pairing links")
        return removed
