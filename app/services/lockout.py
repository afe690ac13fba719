"""Login-attempt lockout rules."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LockState:
    """Consecutive failed attempts and the end of the current lock window, if any."""

    attempts: int = 0
    lock_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now

    def lock_expired(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until <= now


@dataclass(frozen=True)
class LockoutPolicy:
    """Locks an account for ``lock_duration`` once ``max_attempts`` consecutive failures pile up."""

    max_attempts: int = 5
    lock_duration: timedelta = timedelta(hours=2)

    def after_failure(self, state: LockState, now: datetime) -> LockState:
        """Return the state that follows one more failed attempt.

        An expired lock restarts the count at 1. While a lock is active the
        counter keeps growing but the window is not extended.
        """
        if state.lock_expired(now):
            return LockState(attempts=1, lock_until=None)

        attempts = state.attempts + 1
        if attempts >= self.max_attempts and not state.is_locked(now):
            return LockState(attempts=attempts, lock_until=now + self.lock_duration)
        return LockState(attempts=attempts, lock_until=state.lock_until)

    def after_success(self) -> LockState:
        return LockState()
