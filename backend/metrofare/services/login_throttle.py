"""Failed-login counting and timed lockout per username."""

from datetime import datetime, timedelta
import threading
from typing import Callable, Dict, Optional

import structlog

from metrofare.config import settings
from metrofare.exceptions import AccountLocked
from metrofare.models import LoginAttemptState, LoginResult

logger = structlog.get_logger(__name__)


class _UsernameState:
    """Mutable per-username record; only touched while holding `lock`."""

    __slots__ = ("lock", "attempts", "locked_until", "timer", "generation")

    def __init__(self):
        self.lock = threading.Lock()
        self.attempts = 0
        self.locked_until: Optional[datetime] = None
        self.timer: Optional[threading.Timer] = None
        self.generation = 0


class LoginThrottle:
    """
    CLEAR(0) -> CLEAR(n < max) -> LOCKED, and LOCKED -> CLEAR(0) after the
    lockout window.

    Each username has its own lock so attempts on different usernames never
    block each other. The unlock is a one-shot timer armed when the lock is
    taken; re-arming a username replaces its pending timer.
    """

    def __init__(self, max_attempts: Optional[int] = None,
                 lockout_seconds: Optional[float] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.max_attempts = max_attempts or settings.MAX_LOGIN_ATTEMPTS
        self.lockout_seconds = (
            settings.LOCKOUT_SECONDS if lockout_seconds is None else lockout_seconds
        )
        self.clock = clock
        # One record per username ever seen; never pruned
        self._states: Dict[str, _UsernameState] = {}
        self._registry_lock = threading.Lock()

    def _state(self, username: str) -> _UsernameState:
        with self._registry_lock:
            state = self._states.get(username)
            if state is None:
                state = self._states[username] = _UsernameState()
            return state

    def _raise_locked(self, username: str, state: _UsernameState):
        retry_after = max((state.locked_until - self.clock()).total_seconds(), 0.0)
        raise AccountLocked(username, retry_after=retry_after)

    def attempt(self, username: str, verify: Callable[[], bool]) -> LoginResult:
        """
        Run one login attempt.

        Args:
            username: Account being logged into
            verify: Credential check, only called when the username is not locked

        Returns:
            LoginResult with the attempt count after this attempt

        Raises:
            AccountLocked: the username is inside its lockout window
        """
        state = self._state(username)
        with state.lock:
            if state.locked_until is not None:
                self._raise_locked(username, state)

        ok = verify()

        with state.lock:
            # Another session may have locked the username while we verified
            if state.locked_until is not None:
                self._raise_locked(username, state)
            if ok:
                state.attempts = 0
                return LoginResult(username=username, success=True, attempts=0)

            state.attempts += 1
            attempts = state.attempts
            if attempts >= self.max_attempts:
                self._lock(username, state)
                return LoginResult(username=username, success=False, attempts=attempts, locked=True)

        logger.info("login_failed", username=username, attempts=attempts,
                    max_attempts=self.max_attempts)
        return LoginResult(username=username, success=False, attempts=attempts)

    def _lock(self, username: str, state: _UsernameState):
        # Caller holds state.lock
        state.locked_until = self.clock() + timedelta(seconds=self.lockout_seconds)
        if state.timer is not None:
            state.timer.cancel()
        state.generation += 1
        timer = threading.Timer(self.lockout_seconds, self._unlock, args=(username, state.generation))
        timer.daemon = True
        state.timer = timer
        timer.start()
        logger.warning("account_locked", username=username, attempts=state.attempts,
                       lockout_seconds=self.lockout_seconds)

    def _unlock(self, username: str, generation: int):
        state = self._state(username)
        with state.lock:
            if generation != state.generation:
                return
            state.attempts = 0
            state.locked_until = None
            state.timer = None
        logger.info("account_unlocked", username=username)

    def state(self, username: str) -> LoginAttemptState:
        """Consistent view of a username's counter and lock."""
        state = self._state(username)
        with state.lock:
            return LoginAttemptState(
                username=username,
                attempts=state.attempts,
                locked_until=state.locked_until
            )

    def is_locked(self, username: str) -> bool:
        return self.state(username).locked

    def shutdown(self):
        """Cancel pending unlock timers."""
        with self._registry_lock:
            states = list(self._states.values())
        for state in states:
            with state.lock:
                if state.timer is not None:
                    state.timer.cancel()
                    state.timer = None
