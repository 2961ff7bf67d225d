"""
Persistent coordination primitives shared by every process.

KeyedCounter backs fixed-window rate limits; SyncLock backs the
per-entity leases that serialize syncs across processes.
"""

from sqlalchemy import Column, DateTime, Integer, String

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class KeyedCounter(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "keyed_counters"

    counter_key = Column(String(255), nullable=False, unique=True)
    count = Column(Integer, nullable=False, default=0)
    window_started_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class SyncLock(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "sync_locks"

    lock_key = Column(String(255), nullable=False, unique=True)
    owner = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
