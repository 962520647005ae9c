"""Asynchronous execution boundary for blocking token I/O.

Token operations block on the device, so front-ends never run them on their
interactive thread. :class:`TaskRunner` executes them one at a time on a
single worker thread and hands the outcome back through a future or a
delivery callback (e.g. a GUI's "invoke on main thread" hook).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskOutcome(Generic[T]):
    """Result of a background task: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or re-raise the task's error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class TaskRunner:
    """Serial background executor for token operations.

    One worker thread; no pooling of sessions, no locks, no cancellation.
    """

    def __init__(self, *, thread_name_prefix: str = "tokensign") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name_prefix)

    def submit(
        self,
        fn: Callable[..., T],
        *args: Any,
        deliver: Callable[[TaskOutcome[T]], None] | None = None,
        **kwargs: Any,
    ) -> Future[T]:
        """Schedule ``fn(*args, **kwargs)`` on the worker thread.

        Args:
            fn: Blocking operation to run
            deliver: Optional callback receiving the :class:`TaskOutcome` once
                the task completes; it runs on the worker thread, so a GUI
                should marshal it onto its own loop

        Returns:
            Future resolving to the operation's result
        """
        future = self._executor.submit(fn, *args, **kwargs)
        if deliver is not None:
            future.add_done_callback(lambda done: self._deliver(done, deliver))
        return future

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` on the worker thread and wait for its result."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> TaskRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @staticmethod
    def _deliver(future: Future[T], deliver: Callable[[TaskOutcome[T]], None]) -> None:
        error = future.exception()
        outcome: TaskOutcome[T] = (
            TaskOutcome(error=error) if error is not None else TaskOutcome(value=future.result())
        )
        try:
            deliver(outcome)
        except Exception:
            logger.exception("Delivering background task outcome failed")
