from __future__ import annotations

import math
from typing import Dict, Optional

from .state import LoginAttempts

MAX_ATTEMPTS = 5
LOCKOUT_MS = 5 * 60 * 1000


def password_subject(user_id: str) -> str:
    return f"{user_id}_pass"


class AttemptThrottle:
    """Counts failed attempts per throttle subject and locks after ``max_attempts``.

    Records live inside the application state so that lockouts survive a
    restart; the throttle itself only holds the policy.
    """

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, lockout_ms: int = LOCKOUT_MS) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.max_attempts = max_attempts
        self.lockout_ms = lockout_ms

    @property
    def lockout_minutes(self) -> int:
        return max(1, math.ceil(self.lockout_ms / 60_000))

    def locked_minutes(self, records: Dict[str, LoginAttempts], subject: str, now_ms: int) -> Optional[int]:
        """Return the minutes left on an active lockout, or None."""

        record = records.get(subject)
        if record is None or record.locked_until_ms is None:
            return None
        remaining_ms = record.locked_until_ms - now_ms
        if remaining_ms <= 0:
            return None
        return math.ceil(remaining_ms / 60_000)

    def record_failure(self, records: Dict[str, LoginAttempts], subject: str, now_ms: int) -> bool:
        """Count one failed attempt; return True when it engages a lockout."""

        record = records.get(subject) or LoginAttempts()
        if record.locked_until_ms is not None and record.locked_until_ms <= now_ms:
            # An expired window starts a fresh count.
            record = LoginAttempts()
        count = record.count + 1
        locked_until = record.locked_until_ms
        if count >= self.max_attempts:
            locked_until = now_ms + self.lockout_ms
        records[subject] = LoginAttempts(count=count, locked_until_ms=locked_until)
        return count >= self.max_attempts

    def reset(self, records: Dict[str, LoginAttempts], subject: str) -> None:
        records[subject] = LoginAttempts(count=0, locked_until_ms=None)
