"""Fan reviewer tasks out over worker threads and join all of their outcomes."""

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from config import DEFAULT_TASK_TIMEOUT
from errors import ReviewCancelled, ReviewerTimeout
from models import ReviewContext, ReviewOutcome
from reviewers import ReviewerTask

logger = logging.getLogger(__name__)

# How often the join loop re-checks the cancel event
_POLL_INTERVAL = 0.1


class Dispatcher:
    """
    Run every reviewer task against one shared ReviewContext.

    All tasks start together on their own thread and never see each other.
    Each task is bounded by its own timeout; a timeout or an error becomes a
    failed ReviewOutcome and never affects sibling tasks. ``dispatch`` returns
    only once every task has a terminal outcome (join-all).
    """

    def __init__(self, tasks: Sequence[ReviewerTask], timeout: float = DEFAULT_TASK_TIMEOUT):
        identities = [task.identity for task in tasks]
        if len(set(identities)) != len(identities):
            raise ValueError("each reviewer may be dispatched only once")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.tasks = list(tasks)
        self.timeout = timeout

    def _timeout_for(self, task: ReviewerTask) -> float:
        return task.timeout if task.timeout is not None else self.timeout

    def dispatch(
        self,
        context: ReviewContext,
        cancel_event: threading.Event | None = None,
    ) -> list[ReviewOutcome]:
        """
        Run all tasks and return exactly one outcome per task, in dispatch order.

        Raises:
            ReviewCancelled: If *cancel_event* is set before every task finished.
                No outcomes are returned for a cancelled run.
        """
        if not self.tasks:
            logger.warning("No reviewers configured - nothing to dispatch")
            return []

        logger.info(
            "🚀 Dispatching %d reviewer(s): %s",
            len(self.tasks),
            ", ".join(task.identity.display_name for task in self.tasks),
        )

        executor = ThreadPoolExecutor(
            max_workers=len(self.tasks), thread_name_prefix="reviewer"
        )
        started = time.monotonic()
        futures: dict[Future, ReviewerTask] = {
            executor.submit(task.run, context): task for task in self.tasks
        }
        deadlines = {
            future: started + self._timeout_for(task) for future, task in futures.items()
        }
        outcomes: dict = {}
        pending = set(futures)

        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    for future in pending:
                        future.cancel()
                    logger.warning(
                        "🛑 Review cancelled with %d reviewer(s) still running", len(pending)
                    )
                    raise ReviewCancelled(
                        f"review cancelled; {len(pending)} reviewer(s) did not finish"
                    )

                now = time.monotonic()
                for future in [f for f in pending if deadlines[f] <= now]:
                    task = futures[future]
                    if future.done():
                        continue
                    pending.discard(future)
                    future.cancel()
                    budget = self._timeout_for(task)
                    error = ReviewerTimeout(f"did not finish within {budget:g}s")
                    logger.error("   ⏱️  %s timed out after %gs", task.identity.display_name, budget)
                    outcomes[task.identity] = ReviewOutcome.failure(
                        task.identity, str(error), kind="timeout", duration_seconds=budget
                    )

                if not pending:
                    break

                next_deadline = min(deadlines[f] for f in pending)
                wait_for = max(0.0, min(next_deadline - time.monotonic(), _POLL_INTERVAL))
                done, _ = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)

                for future in done:
                    pending.discard(future)
                    task = futures[future]
                    outcomes[task.identity] = self._collect(future, task, started)
        finally:
            # Timed-out threads cannot be killed; they finish in the background
            # and their results are discarded.
            executor.shutdown(wait=False, cancel_futures=True)

        if cancel_event is not None and cancel_event.is_set():
            # A cooperative reviewer may have finished the join by stopping early
            logger.warning("🛑 Review cancelled after every reviewer stopped")
            raise ReviewCancelled("review cancelled")

        failed = sum(1 for outcome in outcomes.values() if not outcome.succeeded)
        logger.info(
            "   Joined %d reviewer(s) in %.1fs (%d failed)",
            len(outcomes),
            time.monotonic() - started,
            failed,
        )
        return [outcomes[task.identity] for task in self.tasks]

    @staticmethod
    def _collect(future: Future, task: ReviewerTask, started: float) -> ReviewOutcome:
        exc = future.exception()
        if exc is None:
            return future.result()
        if isinstance(exc, ReviewCancelled):
            raise exc
        # Anything else is still isolated to this reviewer
        logger.error("   ❌ %s raised %s", task.identity.display_name, exc)
        return ReviewOutcome.failure(
            task.identity,
            f"{type(exc).__name__}: {exc}",
            kind="error",
            duration_seconds=time.monotonic() - started,
        )
