"""Background worker that executes due run transitions.

A small polling loop that:
- claims due RunTransition items with a lease (at-least-once delivery),
- hands each one to RunLifecycle.apply_transition,
- marks it done, defers it, or retries it with linear backoff,
- fails the run once an item exhausts its attempts.

If the process dies mid-item the lease expires and another tick re-claims it.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

from .lifecycle import RunLifecycle
from .models import RunTransition
from .storage.base import DashboardStorage

logger = logging.getLogger(__name__)


class TransitionWorker:
    def __init__(
        self,
        *,
        storage: DashboardStorage,
        lifecycle: RunLifecycle,
        poll_interval_s: float = 0.1,
        batch_size: int = 32,
        lease_s: float = 30.0,
        max_attempts: int = 3,
        retry_backoff_s: float = 0.5,
    ) -> None:
        self.storage = storage
        self.lifecycle = lifecycle
        self.poll_interval_s = poll_interval_s
        self.batch_size = batch_size
        self.lease_s = lease_s
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_s = retry_backoff_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            # A loop that missed its stop deadline is still alive; resume it.
            self._stop.clear()
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="run-transition-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("transition_worker event=started poll_interval_s=%s", self.poll_interval_s)

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            if self._thread.is_alive():
                # Keep the handle so start() cannot launch a second loop.
                logger.warning("transition_worker event=stop_timeout timeout_s=%s", timeout_s)
                return
            self._thread = None
        logger.info("transition_worker event=stopped")

    def process_due(self) -> int:
        """Run one tick. Returns the number of items claimed."""
        now = self.lifecycle.clock()
        items = self.storage.claim_due_transitions(
            now=now,
            limit=self.batch_size,
            lease_s=self.lease_s,
        )
        for item in items:
            self._process(item)
        return len(items)

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.process_due()
            except Exception:  # noqa: BLE001
                logger.exception("transition_worker event=tick_failed")
            self._stop.wait(self.poll_interval_s)

    def _process(self, item: RunTransition) -> None:
        try:
            outcome = self.lifecycle.apply_transition(item)
        except Exception as exc:  # noqa: BLE001
            self._handle_failure(item, exc)
            return

        try:
            now = self.lifecycle.clock()
            if outcome == "deferred":
                self.storage.reschedule_transition(
                    item.id,
                    due_at=now + timedelta(seconds=self.poll_interval_s),
                    attempts=item.attempts,
                    error=None,
                    now=now,
                )
            else:
                self.storage.complete_transition(item.id, now=now)
        except Exception:  # noqa: BLE001
            # Lease expiry re-delivers the item; the CAS makes that harmless.
            logger.exception(
                "transition_worker event=bookkeeping_failed transition_id=%s run_id=%s",
                item.id,
                item.run_id,
            )
            return

        logger.debug(
            "transition_worker event=processed transition_id=%s run_id=%s target=%s outcome=%s",
            item.id,
            item.run_id,
            item.target_status,
            outcome,
        )

    def _handle_failure(self, item: RunTransition, exc: Exception) -> None:
        attempts = item.attempts + 1
        error = str(exc) or exc.__class__.__name__
        logger.warning(
            "transition_worker event=attempt_failed transition_id=%s run_id=%s target=%s "
            "attempt=%s max_attempts=%s error=%s",
            item.id,
            item.run_id,
            item.target_status,
            attempts,
            self.max_attempts,
            error,
        )
        try:
            now = self.lifecycle.clock()
            if attempts >= self.max_attempts:
                self.lifecycle.fail_run(item.run_id, target_status=item.target_status, error=error)
                self.storage.fail_transition(item.id, attempts=attempts, error=error, now=now)
                return
            self.storage.reschedule_transition(
                item.id,
                due_at=now + timedelta(seconds=self.retry_backoff_s * attempts),
                attempts=attempts,
                error=error,
                now=now,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "transition_worker event=failure_handling_failed transition_id=%s run_id=%s",
                item.id,
                item.run_id,
            )
