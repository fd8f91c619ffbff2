"""
Failed 2FA attempt limiter.

In-memory sliding window per user: too many wrong codes inside the window
locks verification for that user for a while. Resets on restart, which is
acceptable for a single-process deployment.
"""
import time
from threading import Lock


class FailedAttemptLimiter:
    """Counts failed verification attempts and locks users out."""

    def __init__(self, max_failures=5, window_s=300, lockout_s=300, clock=time.monotonic):
        self.max_failures = max_failures
        self.window_s = window_s
        self.lockout_s = lockout_s
        self._clock = clock
        self._failures = {}
        self._locked_until = {}
        self._lock = Lock()

    def is_locked(self, key):
        now = self._clock()
        with self._lock:
            until = self._locked_until.get(key)
            if until is None:
                return False
            if now >= until:
                del self._locked_until[key]
                return False
            return True

    def retry_after(self, key):
        """Seconds until ``key`` may try again (0 when not locked)"""
        with self._lock:
            until = self._locked_until.get(key)
        if until is None:
            return 0
        return max(0, int(until - self._clock() + 0.999))

    def record_failure(self, key):
        """Record a wrong code; returns True if this failure triggered a lockout"""
        now = self._clock()
        cutoff = now - self.window_s
        with self._lock:
            recent = [t for t in self._failures.get(key, []) if t > cutoff]
            recent.append(now)
            if len(recent) >= self.max_failures:
                self._locked_until[key] = now + self.lockout_s
                self._failures.pop(key, None)
                return True
            self._failures[key] = recent
            return False

    def reset(self, key):
        with self._lock:
            self._failures.pop(key, None)
            self._locked_until.pop(key, None)
