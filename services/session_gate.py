"""
Session two-factor gate.

Decides whether a signed-in user may see protected pages, must answer a
2FA challenge, or must enroll first. "Verified" lives only in
``SessionTwoFactorStore``, keyed by (user id, session id), and is never
written to the database: every new session is challenged again, and
markers lapse together with the session cookie.
"""
import enum
import time
from threading import Lock


class GateDecision(enum.Enum):
    AUTHENTICATE = 'authenticate'  # no signed-in user
    CONTENT = 'content'
    CHALLENGE = 'challenge'  # enrolled, not verified this session
    ENROLL = 'enroll'  # 2FA required but no credential yet


class SessionTwoFactorStore:
    """Per-session 2FA state: the verified marker and any pending enrollment.

    Entries expire ``max_age_s`` seconds after they were written, matching the
    session cookie lifetime, so sessions that end without a sign-out do not
    stay verified and do not pile up.
    """

    def __init__(self, max_age_s=43200, clock=time.monotonic):
        self.max_age_s = max_age_s
        self._clock = clock
        self._verified = {}  # (user_id, session_id) -> issued at
        self._pending = {}  # (user_id, session_id) -> (issued at, enrollment)
        self._lock = Lock()

    def _expired(self, issued_at, now):
        return now - issued_at >= self.max_age_s

    def _prune(self, now):
        # Caller holds the lock
        self._verified = {key: issued_at for key, issued_at in self._verified.items()
                          if not self._expired(issued_at, now)}
        self._pending = {key: entry for key, entry in self._pending.items()
                         if not self._expired(entry[0], now)}

    def mark_verified(self, user_id, session_id):
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._verified[(user_id, session_id)] = now

    def is_verified(self, user_id, session_id):
        now = self._clock()
        with self._lock:
            issued_at = self._verified.get((user_id, session_id))
            if issued_at is None:
                return False
            if self._expired(issued_at, now):
                del self._verified[(user_id, session_id)]
                return False
            return True

    def set_pending(self, user_id, session_id, pending):
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._pending[(user_id, session_id)] = (now, pending)

    def get_pending(self, user_id, session_id):
        now = self._clock()
        with self._lock:
            entry = self._pending.get((user_id, session_id))
            if entry is None:
                return None
            if self._expired(entry[0], now):
                del self._pending[(user_id, session_id)]
                return None
            return entry[1]

    def pop_pending(self, user_id, session_id):
        now = self._clock()
        with self._lock:
            entry = self._pending.pop((user_id, session_id), None)
        if entry is None or self._expired(entry[0], now):
            return None
        return entry[1]

    def clear(self, user_id, session_id):
        """Forget everything about one session (sign-out)"""
        with self._lock:
            self._verified.pop((user_id, session_id), None)
            self._pending.pop((user_id, session_id), None)

    def clear_user(self, user_id):
        """Forget every session of a user, e.g. after 2FA was disabled"""
        with self._lock:
            self._verified = {key: value for key, value in self._verified.items()
                              if key[0] != user_id}
            self._pending = {key: value for key, value in self._pending.items()
                             if key[0] != user_id}

    def __len__(self):
        """Verified-session entries currently held, expired ones included until pruned"""
        with self._lock:
            return len(self._verified)


def decide(user_id, session_id, store, is_required, is_enrolled):
    """Pick what a protected route should do for this request.

    ``is_required`` and ``is_enrolled`` are zero-argument callables so the
    policy and credential lookups only run when the decision needs them.
    """
    if user_id is None or session_id is None:
        return GateDecision.AUTHENTICATE
    if not is_required():
        return GateDecision.CONTENT
    if store.is_verified(user_id, session_id):
        return GateDecision.CONTENT
    if is_enrolled():
        return GateDecision.CHALLENGE
    return GateDecision.ENROLL
