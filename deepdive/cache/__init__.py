"""Valkey (Redis-compatible) client and run locking."""

from .client import (
    close_valkey_client,
    get_valkey_client,
    init_valkey_pool,
    valkey_healthcheck,
)
from .distributed_lock import (
    DistributedLock,
    run_lock,
)


__all__ = [
    "DistributedLock",
    "close_valkey_client",
    "get_valkey_client",
    "init_valkey_pool",
    "run_lock",
    "valkey_healthcheck",
]
