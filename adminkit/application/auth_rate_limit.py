import hashlib
import time
from collections import defaultdict
from typing import DefaultDict, List, Protocol

IDENTIFIER_HASH_LENGTH = 64
LOCKOUT_MESSAGE = "Too many failed login attempts, try again later"


class LoginThrottle(Protocol):
    async def is_locked(self, identifier: str) -> bool:
        ...

    async def record_failure(self, identifier: str) -> None:
        ...

    async def reset(self, identifier: str) -> None:
        ...

    async def close(self) -> None:
        ...


class SoftRateLimiter:
    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: DefaultDict[str, List[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        attempts = [ts for ts in self._attempts.get(key, []) if ts >= cutoff]
        if attempts:
            self._attempts[key] = attempts
        else:
            self._attempts.pop(key, None)
        return attempts

    def is_limited(self, key: str, now: float | None = None) -> bool:
        current = now or time.time()
        attempts = self._prune(key, current)
        return len(attempts) >= self.max_attempts

    def record_failure(self, key: str, now: float | None = None) -> None:
        current = now or time.time()
        attempts = self._prune(key, current)
        attempts.append(current)
        self._attempts[key] = attempts

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)

    def clear(self) -> None:
        self._attempts.clear()


def lockout_key(identifier: str) -> str:
    """Account-scoped key. Emails are compared case-insensitively."""
    if not identifier:
        raise ValueError("identifier is required for login lockout")
    identifier_hash = hashlib.sha256(identifier.strip().lower().encode()).hexdigest()
    return f"login:{identifier_hash[:IDENTIFIER_HASH_LENGTH]}"


class InMemoryLoginThrottle:
    """Per-process lockout: ``max_attempts`` failures within ``lockout_seconds``
    lock the account until the oldest failure ages out."""

    def __init__(self, max_attempts: int, lockout_seconds: int) -> None:
        self.limiter = SoftRateLimiter(max_attempts=max_attempts, window_seconds=lockout_seconds)

    async def is_locked(self, identifier: str) -> bool:
        return self.limiter.is_limited(lockout_key(identifier))

    async def record_failure(self, identifier: str) -> None:
        self.limiter.record_failure(lockout_key(identifier))

    async def reset(self, identifier: str) -> None:
        self.limiter.reset(lockout_key(identifier))

    async def close(self) -> None:
        self.limiter.clear()

    def clear(self) -> None:
        self.limiter.clear()
