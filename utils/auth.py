import secrets
import threading
import time
from typing import Callable, Dict, Optional
import jwt
from pydantic import BaseModel
from utils.errors import AuthError, RateLimitError

# Sessions are HS256 signatures keyed by the shared token. The claims are
# fixed so the same token always produces the same session value.
SESSION_ALGORITHM = "HS256"
SESSION_CLAIMS = {"sub": "operator", "type": "session"}


class FailureRecord(BaseModel):
    """Login failures seen from one client inside the current window"""

    count: int = 0
    window_start: float = 0.0


def tokens_match(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def sign_session(token: str) -> str:
    """
    Compute the session cookie value for a token.

    Args:
        token: The shared access token

    Returns:
        The encoded session value
    """
    return jwt.encode(dict(SESSION_CLAIMS), token, algorithm=SESSION_ALGORITHM)


def verify_session(session_value: Optional[str], expected_token: Optional[str]) -> bool:
    """
    Check a session value against the token it should have been signed with.

    Args:
        session_value: Value taken from the session cookie
        expected_token: The currently configured access token

    Returns:
        True if the signature and claims match, False otherwise
    """
    if not session_value or not expected_token:
        return False
    try:
        payload = jwt.decode(
            session_value, expected_token, algorithms=[SESSION_ALGORITHM]
        )
    except jwt.InvalidTokenError:
        return False
    return payload.get("sub") == SESSION_CLAIMS["sub"] and payload.get(
        "type"
    ) == SESSION_CLAIMS["type"]


class LoginRateLimiter:
    """
    Per-client failure counter with a fixed lockout window.

    Logins are handled in the threadpool, so every access to the failure map
    holds ``_lock``. Expired records are pruned whenever a failure is
    recorded, which keeps the map bounded by the clients seen in one window.
    """

    def __init__(
        self,
        max_failures: int = 5,
        window_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self.clock = clock
        self._failures: Dict[str, FailureRecord] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._failures)

    def _expired(self, record: FailureRecord, now: float) -> bool:
        return now - record.window_start >= self.window_seconds

    def _current(self, client_ip: str) -> Optional[FailureRecord]:
        record = self._failures.get(client_ip)
        if record and self._expired(record, self.clock()):
            self._failures.pop(client_ip, None)
            return None
        return record

    def _prune(self):
        now = self.clock()
        for client_ip, record in list(self._failures.items()):
            if self._expired(record, now):
                del self._failures[client_ip]

    def is_limited(self, client_ip: str) -> bool:
        with self._lock:
            record = self._current(client_ip)
            return bool(record and record.count >= self.max_failures)

    def retry_after(self, client_ip: str) -> int:
        with self._lock:
            record = self._current(client_ip)
            if not record:
                return 0
            remaining = self.window_seconds - (self.clock() - record.window_start)
        return max(1, int(remaining + 0.999))

    def record_failure(self, client_ip: str) -> int:
        with self._lock:
            self._prune()
            record = self._failures.get(client_ip)
            if record is None:
                record = FailureRecord(count=0, window_start=self.clock())
                self._failures[client_ip] = record
            record.count += 1
            return record.count

    def reset(self, client_ip: str):
        with self._lock:
            self._failures.pop(client_ip, None)


class SessionAuth:
    """Token login and session verification for the control plane"""

    def __init__(self, token: str, limiter: LoginRateLimiter, enabled: bool = True):
        self.token = token
        self.limiter = limiter
        self.enabled = enabled

    def login(self, provided_token: Optional[str], client_ip: str) -> str:
        """
        Exchange the shared token for a session value.

        Args:
            provided_token: Token submitted by the client
            client_ip: Address used for rate limiting

        Returns:
            The session value to store in the cookie

        Raises:
            RateLimitError: the client is locked out, checked before the token
            AuthError: the token does not match
        """
        if self.limiter.is_limited(client_ip):
            raise RateLimitError(retry_after=self.limiter.retry_after(client_ip))

        if not tokens_match(provided_token, self.token):
            self.limiter.record_failure(client_ip)
            raise AuthError("Invalid token")

        self.limiter.reset(client_ip)
        return sign_session(self.token)

    def verify(self, session_value: Optional[str]) -> bool:
        return verify_session(session_value, self.token)

    def verify_bearer(self, bearer: Optional[str]) -> bool:
        """Bearer credentials may carry the raw token or a session value."""
        return tokens_match(bearer, self.token) or self.verify(bearer)
