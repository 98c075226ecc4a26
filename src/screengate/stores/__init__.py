"""Persistence collaborators: abstract interfaces plus memory and SQL backends."""

from .base import AccountStore, JobStore, LinkStore
from .memory import MemoryStore
from .sql import SqlAccountStore, SqlJobStore, SqlLinkStore

__all__ = [
    "AccountStore",
    "JobStore",
    "LinkStore",
    "MemoryStore",
    "SqlAccountStore",
    "SqlJobStore",
    "SqlLinkStore",
]
