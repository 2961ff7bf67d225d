"""
Per-entity serialization of sync work.

Two events for the same (tenant, provider, entity) must not run the
check-mapping -> create-or-update sequence at the same time, or both may
create a remote record. ``SyncLockService.lock`` serializes them:

- inside one process with a re-entrant ``threading.RLock`` per key
- across processes with a lease row in ``sync_locks`` that expires after
  ``ttl`` seconds, so a crashed holder cannot block the key forever

The lock is re-entrant per thread, so a stage change that falls back to the
create path can take the same key again.

A holder whose work can outlive ``ttl`` (several remote calls with backoff)
calls ``renew_held_leases()`` between steps; every lease the current thread
holds is pushed ``ttl`` seconds into the future. A lease that was taken over
in the meantime raises LockTimeoutError instead of being silently shared.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Iterator, NamedTuple, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError

from ..config import get_config
from ..db.db_base import utc_now
from ..db.db_coordination_models import SyncLock
from ..exceptions import LockTimeoutError
from .base_service import BaseService

POLL_INTERVAL = 0.1


class _LocalLock:
    """An RLock shared by the threads currently interested in one key."""

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class _Lease(NamedTuple):
    owner: str
    depth: int
    service: "SyncLockService"
    ttl: int


_registry_guard = threading.Lock()
_local_locks: Dict[str, _LocalLock] = {}
_held = threading.local()


def entity_lock_key(tenant_id: str, provider: str, entity_type: str, entity_id: str) -> str:
    return f"sync:{tenant_id}:{provider}:{entity_type}:{entity_id}"


def _checkout(key: str) -> _LocalLock:
    with _registry_guard:
        entry = _local_locks.get(key)
        if entry is None:
            entry = _local_locks[key] = _LocalLock()
        entry.users += 1
        return entry


def _checkin(key: str, entry: _LocalLock) -> None:
    with _registry_guard:
        entry.users -= 1
        if entry.users <= 0 and _local_locks.get(key) is entry:
            del _local_locks[key]


def _held_leases() -> Dict[str, _Lease]:
    if not hasattr(_held, "leases"):
        _held.leases = {}
    return _held.leases


def renew_held_leases() -> int:
    """
    Extend every lease held by the calling thread by its ttl.

    Returns:
        Number of leases renewed

    Raises:
        LockTimeoutError: A lease expired and was taken over by another owner
    """
    leases = _held_leases()
    for key, lease in list(leases.items()):
        lease.service._renew_lease(key, lease.owner, lease.ttl)
    return len(leases)


class SyncLockService(BaseService):
    @contextmanager
    def lock(
        self, key: str, ttl: Optional[int] = None, wait: Optional[float] = None
    ) -> Iterator[str]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Lock key, usually built with entity_lock_key()
            ttl: Lease lifetime in seconds (default: config.sync.lock_ttl)
            wait: Maximum seconds to wait for the lock (default: config.sync.lock_wait)

        Yields:
            The owner token of the lease

        Raises:
            LockTimeoutError: If the lock could not be acquired within ``wait``
        """
        sync_config = get_config().sync
        ttl = ttl if ttl is not None else sync_config.lock_ttl
        wait = wait if wait is not None else sync_config.lock_wait
        deadline = time.monotonic() + wait

        entry = _checkout(key)
        try:
            if not entry.lock.acquire(timeout=wait):
                raise LockTimeoutError(f"Timed out waiting for sync lock {key}", lock_key=key)
            try:
                with self._lease(key, ttl, deadline) as owner:
                    yield owner
            finally:
                entry.lock.release()
        finally:
            _checkin(key, entry)

    @contextmanager
    def _lease(self, key: str, ttl: int, deadline: float) -> Iterator[str]:
        leases = _held_leases()
        if key in leases:
            leases[key] = leases[key]._replace(depth=leases[key].depth + 1)
            try:
                yield leases[key].owner
            finally:
                leases[key] = leases[key]._replace(depth=leases[key].depth - 1)
            return

        owner = uuid.uuid4().hex
        self._acquire_lease(key, owner, ttl, deadline)
        leases[key] = _Lease(owner, 1, self, ttl)
        try:
            yield owner
        finally:
            leases.pop(key, None)
            self._release_lease(key, owner)

    def _acquire_lease(self, key: str, owner: str, ttl: int, deadline: float) -> None:
        while True:
            now = utc_now()
            expires_at = now + timedelta(seconds=ttl)

            self.session.add(SyncLock(lock_key=key, owner=owner, expires_at=expires_at))
            try:
                self.session.commit()
                return
            except IntegrityError:
                self.session.rollback()

            # Take over a lease whose holder let it expire
            taken = (
                self.session.query(SyncLock)
                .filter(and_(SyncLock.lock_key == key, SyncLock.expires_at <= now))
                .update({"owner": owner, "expires_at": expires_at}, synchronize_session=False)
            )
            self._commit("sync_lock_takeover")
            if taken:
                self.logger.warning("Took over expired sync lock", extra={"lock_key": key})
                return

            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for sync lock {key}", lock_key=key)
            time.sleep(POLL_INTERVAL)

    def _renew_lease(self, key: str, owner: str, ttl: int) -> None:
        if not self.session.is_active:
            self.session.rollback()
        renewed = (
            self.session.query(SyncLock)
            .filter(and_(SyncLock.lock_key == key, SyncLock.owner == owner))
            .update(
                {"expires_at": utc_now() + timedelta(seconds=ttl)}, synchronize_session=False
            )
        )
        self._commit("sync_lock_renew")
        if not renewed:
            self.logger.error("Lost sync lock to another owner", extra={"lock_key": key})
            raise LockTimeoutError(f"Lost sync lock {key}", lock_key=key)

    def _release_lease(self, key: str, owner: str) -> None:
        if not self.session.is_active:
            self.session.rollback()
        self.session.query(SyncLock).filter(
            and_(SyncLock.lock_key == key, SyncLock.owner == owner)
        ).delete(synchronize_session=False)
        self._commit("sync_lock_release")

    def is_locked(self, key: str) -> bool:
        """True when an unexpired lease exists for ``key``."""
        return (
            self.session.query(SyncLock)
            .filter(and_(SyncLock.lock_key == key, SyncLock.expires_at > utc_now()))
            .first()
            is not None
        )
