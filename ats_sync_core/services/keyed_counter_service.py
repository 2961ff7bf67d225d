"""
Persistent fixed-window counters.

Counters live in the database so that limits hold across process restarts
and across every instance sharing the database. Each key counts hits inside
a window that starts with the first hit and expires ``window_seconds`` later.
Increments are conditional UPDATE statements, so concurrent callers never
push a counter past its limit.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError

from ..db.db_base import as_utc, utc_now
from ..db.db_coordination_models import KeyedCounter
from ..exceptions import RateLimitExceededError, ServiceError
from ..schemas.integration_schemas import CounterState
from .base_service import BaseService

MAX_CONTENDED_ATTEMPTS = 5


class KeyedCounterService(BaseService):
    def _find(self, key: str) -> Optional[KeyedCounter]:
        return self.session.query(KeyedCounter).filter(KeyedCounter.counter_key == key).first()

    def hit(self, key: str, limit: Optional[int], window_seconds: int) -> CounterState:
        """
        Count one hit against ``key``.

        Args:
            key: Counter key, e.g. ``manual-sync:<tenant>:<provider>``
            limit: Maximum hits per window, or None for an unbounded counter
            window_seconds: Window length, starting at the first hit

        Returns:
            CounterState; ``limited`` is True when the hit was refused
        """
        for _ in range(MAX_CONTENDED_ATTEMPTS):
            now = utc_now()
            expires_at = now + timedelta(seconds=window_seconds)
            counter = self._find(key)

            if counter is None:
                self.session.add(
                    KeyedCounter(
                        counter_key=key, count=1, window_started_at=now, expires_at=expires_at
                    )
                )
                try:
                    self._commit_insert()
                except IntegrityError:
                    self.session.rollback()
                    continue
                return self._state(key, 1, limit, expires_at, limited=False)

            if as_utc(counter.expires_at) <= now:
                # Window elapsed: restart it, guarded on the window we observed
                updated = (
                    self.session.query(KeyedCounter)
                    .filter(
                        and_(
                            KeyedCounter.id == counter.id,
                            KeyedCounter.window_started_at == counter.window_started_at,
                        )
                    )
                    .update(
                        {"count": 1, "window_started_at": now, "expires_at": expires_at},
                        synchronize_session=False,
                    )
                )
                self._commit("keyed_counter_reset_window")
                if updated:
                    return self._state(key, 1, limit, expires_at, limited=False)
                continue

            conditions = [KeyedCounter.id == counter.id, KeyedCounter.expires_at > now]
            if limit is not None:
                conditions.append(KeyedCounter.count < limit)
            updated = (
                self.session.query(KeyedCounter)
                .filter(and_(*conditions))
                .update({"count": KeyedCounter.count + 1}, synchronize_session=False)
            )
            self._commit("keyed_counter_hit")
            self.session.expire(counter)

            current = self._find(key)
            if current is None:
                continue
            if not updated and as_utc(current.expires_at) <= utc_now():
                continue
            return self._state(
                key, current.count, limit, as_utc(current.expires_at), limited=not updated
            )

        raise ServiceError(
            f"Keyed counter {key} is too contended to update",
            operation="keyed_counter_hit",
            counter_key=key,
        )

    def hit_or_raise(self, key: str, limit: int, window_seconds: int) -> CounterState:
        """Like hit(), but raise RateLimitExceededError when the hit is refused."""
        state = self.hit(key, limit, window_seconds)
        if state.limited:
            raise RateLimitExceededError(
                f"Rate limit exceeded for {key}; resets at {state.reset_at.isoformat()}",
                counter_key=key,
                limit=limit,
                reset_at=state.reset_at.isoformat(),
            )
        return state

    def peek(self, key: str) -> int:
        """Current count for ``key``; 0 when the counter is missing or expired."""
        counter = self._find(key)
        if counter is None or as_utc(counter.expires_at) <= utc_now():
            return 0
        return counter.count

    def reset(self, key: str) -> bool:
        deleted = (
            self.session.query(KeyedCounter)
            .filter(KeyedCounter.counter_key == key)
            .delete(synchronize_session=False)
        )
        self._commit("keyed_counter_reset")
        return bool(deleted)

    def purge_expired(self) -> int:
        """Delete every counter whose window has elapsed."""
        deleted = (
            self.session.query(KeyedCounter)
            .filter(KeyedCounter.expires_at <= utc_now())
            .delete(synchronize_session=False)
        )
        self._commit("keyed_counter_purge")
        return deleted

    def _commit_insert(self) -> None:
        # IntegrityError must reach hit() untranslated so it can retry
        self.session.commit()

    @staticmethod
    def _state(key, count, limit, reset_at, limited) -> CounterState:
        effective_limit = limit if limit is not None else count
        return CounterState(
            key=key,
            count=count,
            limit=effective_limit,
            remaining=max(effective_limit - count, 0),
            reset_at=reset_at,
            limited=limited,
        )
