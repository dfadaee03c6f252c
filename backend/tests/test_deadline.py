"""
Tests for query deadlines and cancellation
"""
import time

from sql_sentinel.core.deadline import Deadline


class TestDeadline:

    def test_no_timeout_never_expires(self):
        deadline = Deadline()
        assert not deadline.expired
        assert deadline.remaining_seconds() is None
        assert deadline.remaining_ms() is None

    def test_expires_after_timeout(self):
        deadline = Deadline(0.05)
        assert not deadline.expired
        time.sleep(0.1)
        assert deadline.expired
        assert deadline.remaining_ms() == 0

    def test_cancel_runs_bound_callbacks(self):
        calls = []
        deadline = Deadline(10)
        deadline.bind(lambda: calls.append("cancel"))
        deadline.cancel()
        assert calls == ["cancel"]
        assert deadline.cancelled
        assert deadline.expired
        assert deadline.remaining_seconds() == 0.0

    def test_bind_after_cancel_runs_immediately(self):
        calls = []
        deadline = Deadline()
        deadline.cancel()
        deadline.bind(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_unbound_callback_not_run(self):
        calls = []

        def callback():
            calls.append("cancel")

        deadline = Deadline()
        deadline.bind(callback)
        deadline.unbind(callback)
        deadline.cancel()
        assert calls == []

    def test_failing_callback_does_not_stop_others(self):
        calls = []

        def broken():
            raise RuntimeError("driver gone")

        deadline = Deadline()
        deadline.bind(broken)
        deadline.bind(lambda: calls.append("second"))
        deadline.cancel()
        assert calls == ["second"]
