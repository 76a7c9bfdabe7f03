"""
Lockout State Machine

Per-actor states are Open and Locked(until). The transitions are pure
functions over Actor records; callers persist the result while holding the
directory's per-actor lock so concurrent attempts cannot lose updates.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from phi_guard.models.actor import Actor
from phi_guard.utils.config import Settings


@dataclass(frozen=True)
class LockState:
    locked: bool
    until: Optional[datetime] = None


OPEN = LockState(locked=False)


class LockoutPolicy:
    """Failure threshold and lock duration for password authentication"""

    def __init__(self, threshold: int = 5, duration: timedelta = timedelta(minutes=30)):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.duration = duration

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            threshold=settings.LOCKOUT_THRESHOLD,
            duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
        )

    def state(self, actor: Actor, now: datetime) -> LockState:
        """Current state; an elapsed lock reads as Open"""
        if actor.locked_until is not None and now < actor.locked_until:
            return LockState(locked=True, until=actor.locked_until)
        return OPEN

    def register_failure(self, actor: Actor, now: datetime) -> Actor:
        """Count a failed password check, locking at the threshold"""
        attempts = actor.failed_login_attempts
        if actor.locked_until is not None and now >= actor.locked_until:
            # the previous lock has run out; start a fresh window
            attempts = 0

        attempts += 1
        locked_until = None
        if attempts >= self.threshold:
            locked_until = now + self.duration

        return actor.model_copy(update={
            "failed_login_attempts": attempts,
            "locked_until": locked_until,
        })

    def register_success(self, actor: Actor, now: datetime) -> Actor:
        """Successful password check: back to Open with a zero counter"""
        return actor.model_copy(update={
            "failed_login_attempts": 0,
            "locked_until": None,
            "last_login_at": now,
        })
