"""Unit tests for failed-login lockout."""

import threading
import time

import pytest

from metrofare.context import AppContext
from metrofare.exceptions import AccountLocked
from metrofare.services import LoginThrottle


def wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


class TestLoginThrottle:
    """Test attempt counting and the lockout window."""

    def setup_method(self):
        """Setup test fixtures."""
        self.throttle = LoginThrottle(max_attempts=3, lockout_seconds=60)

    def teardown_method(self):
        self.throttle.shutdown()

    def test_failures_are_counted(self):
        """Each failure bumps the counter until the limit."""
        first = self.throttle.attempt("alice", lambda: False)
        second = self.throttle.attempt("alice", lambda: False)

        assert not first.success
        assert first.attempts == 1
        assert second.attempts == 2
        assert not second.locked
        assert not self.throttle.is_locked("alice")

    def test_success_resets_counter(self):
        """A good password clears earlier failures."""
        self.throttle.attempt("alice", lambda: False)
        self.throttle.attempt("alice", lambda: False)

        result = self.throttle.attempt("alice", lambda: True)

        assert result.success
        assert result.attempts == 0
        assert self.throttle.state("alice").attempts == 0

    def test_third_failure_locks(self):
        """Reaching the limit locks the username."""
        for _ in range(2):
            self.throttle.attempt("alice", lambda: False)

        result = self.throttle.attempt("alice", lambda: False)

        assert result.locked
        assert result.attempts == 3
        state = self.throttle.state("alice")
        assert state.locked
        assert state.locked_until is not None

    def test_locked_username_is_refused_without_verifying(self):
        """Credentials are not even checked during the lockout."""
        for _ in range(3):
            self.throttle.attempt("alice", lambda: False)
        calls = []

        def verify():
            calls.append(1)
            return True

        with pytest.raises(AccountLocked) as exc_info:
            self.throttle.attempt("alice", verify)

        assert calls == []
        assert exc_info.value.username == "alice"
        assert 0 < exc_info.value.retry_after <= 60

    def test_usernames_are_independent(self):
        """Locking one username leaves others alone."""
        for _ in range(3):
            self.throttle.attempt("alice", lambda: False)

        assert self.throttle.attempt("bob", lambda: True).success
        assert not self.throttle.is_locked("bob")

    def test_unlocks_after_window(self):
        """The timer clears the lock and the counter."""
        throttle = LoginThrottle(max_attempts=3, lockout_seconds=0.1)
        try:
            for _ in range(3):
                throttle.attempt("alice", lambda: False)
            assert throttle.is_locked("alice")

            assert wait_until(lambda: not throttle.is_locked("alice"))
            assert throttle.state("alice").attempts == 0
            assert throttle.attempt("alice", lambda: True).success
        finally:
            throttle.shutdown()

    def test_concurrent_failures_are_not_lost(self):
        """Parallel failures on one username all count."""
        throttle = LoginThrottle(max_attempts=1000, lockout_seconds=60)
        barrier = threading.Barrier(8)

        def fail():
            barrier.wait()
            for _ in range(50):
                throttle.attempt("alice", lambda: False)

        threads = [threading.Thread(target=fail) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert throttle.state("alice").attempts == 400
        throttle.shutdown()

    def test_shutdown_cancels_pending_unlock(self):
        """After shutdown the lock is left as it was."""
        throttle = LoginThrottle(max_attempts=1, lockout_seconds=0.2)
        throttle.attempt("alice", lambda: False)

        throttle.shutdown()
        time.sleep(0.4)

        assert throttle.is_locked("alice")


class TestContextLogin:
    """Test the session-start hook on the application context."""

    def test_login_goes_through_throttle(self, repository):
        """Failures through the context lock the username."""
        context = AppContext(repository, lockout_seconds=60)
        try:
            assert context.login("alice", lambda: True).success
            for _ in range(3):
                context.login("alice", lambda: False)

            with pytest.raises(AccountLocked):
                context.login("alice", lambda: True)
            assert context.login_throttle.is_locked("alice")
        finally:
            context.close()
