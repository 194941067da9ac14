"""
Tests for background tasks.
"""

import threading

import pytest

from vmdeck.exceptions import OperationError
from vmdeck.tasks import TaskRunner


@pytest.fixture
def runner():
    return TaskRunner()


class TestTaskRunner:
    """Submission, polling and waiting."""

    def test_wait_returns_result(self, runner):
        task = runner.submit(lambda: 42, "answer")
        assert runner.wait(task, poll_interval=0.01, timeout=5) == 42
        assert runner.tasks == []

    def test_wait_reraises(self, runner):
        def fail():
            raise OperationError("Clone", "disk full")

        task = runner.submit(fail, "clone")
        with pytest.raises(OperationError, match="disk full"):
            runner.wait(task, poll_interval=0.01, timeout=5)

    def test_wait_timeout(self, runner):
        release = threading.Event()
        task = runner.submit(release.wait, "stuck")
        try:
            with pytest.raises(OperationError, match="timed out"):
                runner.wait(task, poll_interval=0.01, timeout=0.05)
            assert runner.pending == 1
        finally:
            release.set()

    def test_poll_runs_callbacks_once(self, runner):
        results, errors = [], []
        ok = runner.submit(lambda: "new-uuid", "ok", on_success=results.append)
        bad = runner.submit(lambda: 1 / 0, "bad", on_error=errors.append)
        ok._done.wait(5)
        bad._done.wait(5)

        completed = runner.poll()

        assert set(completed) == {ok, bad}
        assert results == ["new-uuid"]
        assert isinstance(errors[0], ZeroDivisionError)
        assert runner.poll() == []
        assert results == ["new-uuid"]

    def test_poll_leaves_running_tasks(self, runner):
        release = threading.Event()
        task = runner.submit(release.wait, "running")
        try:
            assert runner.poll() == []
            assert runner.tasks == [task]
            assert runner.pending == 1
        finally:
            release.set()
            task._done.wait(5)
        assert runner.poll() == [task]
        assert runner.pending == 0
