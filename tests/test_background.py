"""Tests for the background task runner."""

import threading

import pytest

from tokensign.app import TaskOutcome, TaskRunner
from tokensign.errors import TokenNotFoundError


def test_run_executes_off_calling_thread():
    caller = threading.current_thread().name

    with TaskRunner() as runner:
        worker = runner.run(lambda: threading.current_thread().name)

    assert worker != caller
    assert worker.startswith("tokensign")


def test_run_reraises_task_error():
    def boom():
        raise TokenNotFoundError("Selected token not found")

    with TaskRunner() as runner, pytest.raises(TokenNotFoundError):
        runner.run(boom)


def test_deliver_receives_outcome():
    received: list[TaskOutcome] = []
    done = threading.Event()

    def deliver(outcome):
        received.append(outcome)
        done.set()

    with TaskRunner() as runner:
        runner.submit(lambda a, b: a + b, 2, 3, deliver=deliver)
        assert done.wait(timeout=5)

    assert received[0].ok
    assert received[0].unwrap() == 5


def test_deliver_receives_error():
    received: list[TaskOutcome] = []
    done = threading.Event()

    def fail():
        raise TokenNotFoundError("gone")

    def deliver(outcome):
        received.append(outcome)
        done.set()

    with TaskRunner() as runner:
        runner.submit(fail, deliver=deliver)
        assert done.wait(timeout=5)

    outcome = received[0]
    assert not outcome.ok
    with pytest.raises(TokenNotFoundError):
        outcome.unwrap()


def test_tasks_run_serially_in_submission_order():
    order: list[int] = []

    with TaskRunner() as runner:
        futures = [runner.submit(order.append, i) for i in range(5)]
        for future in futures:
            future.result()

    assert order == [0, 1, 2, 3, 4]
