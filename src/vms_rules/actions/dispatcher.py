"""Action dispatch for matched rules.

Local actions (``audit_log``, ``log``) run synchronously inside
``dispatch``. Webhooks become ``DeliveryAttempt`` objects on a bounded
queue that a fixed pool of asyncio workers drains:

    pending → in_flight → succeeded
                        → retrying → pending → in_flight ...
                        → failed            (retries exhausted)
    pending → shed                          (queue overflow, oldest first)

``dispatch`` never waits on webhook state, so ingestion throughput is
independent of endpoint latency. The queue, the in-flight counter and
the backoff timers are guarded by one lock so cameras feeding events
from their own threads can call ``dispatch`` directly.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Iterable

from ..config import DispatcherConfig
from ..exceptions import DeliveryError
from ..reporting import Outcome, OutcomeKind, OutcomeReporter
from ..rules.models import (
    AuditLogAction,
    DeliveryAttempt,
    DeliveryState,
    LogAction,
    MatchResult,
    WebhookAction,
    utcnow,
)
from .audit import AuditRecord, AuditSink, MemoryAuditLog
from .webhook import WebhookClient

logger = logging.getLogger("vms-rules")


class ActionDispatcher:
    """Runs each matched rule's actions with retry and backpressure."""

    def __init__(
        self,
        config: DispatcherConfig | None = None,
        *,
        audit: AuditSink | None = None,
        webhook: WebhookClient | None = None,
        reporter: OutcomeReporter | None = None,
    ) -> None:
        self._config = config or DispatcherConfig()
        self._audit = audit if audit is not None else MemoryAuditLog()
        self._webhook = webhook or WebhookClient()
        self._reporter = reporter or OutcomeReporter(self._config.history_size)

        self._lock = threading.Lock()
        self._queue: deque[DeliveryAttempt] = deque()
        self._in_flight = 0
        self._backoff: dict[str, tuple[asyncio.TimerHandle, DeliveryAttempt]] = {}

        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._workers: list[asyncio.Task] = []

    @property
    def reporter(self) -> OutcomeReporter:
        return self._reporter

    @property
    def audit(self) -> AuditSink:
        return self._audit

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the delivery workers on the running event loop."""
        self._start_workers(asyncio.get_running_loop())

    def _start_workers(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._workers:
            return
        self._loop = loop
        self._wakeup = asyncio.Event()
        self._workers = [
            loop.create_task(self._worker(i)) for i in range(self._config.max_in_flight)
        ]
        logger.info(f"Action dispatcher started with {len(self._workers)} worker(s)")
        # Attempts queued before start
        self._wakeup.set()

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until nothing is queued, in flight or backing off.

        Returns False if ``timeout`` elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while not self.idle:
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    async def close(self) -> None:
        """Stop workers and report anything still undelivered."""
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        with self._lock:
            leftovers = list(self._queue)
            self._queue.clear()
            for handle, attempt in self._backoff.values():
                handle.cancel()
                leftovers.append(attempt)
            self._backoff.clear()
        for attempt in leftovers:
            attempt.state = DeliveryState.FAILED
            self._report(
                OutcomeKind.DELIVERY_FAILURE, attempt, "dispatcher closed before delivery"
            )
        await self._webhook.close()

    @property
    def idle(self) -> bool:
        with self._lock:
            return not self._queue and self._in_flight == 0 and not self._backoff

    def stats(self) -> dict:
        with self._lock:
            state = {
                "queued": len(self._queue),
                "in_flight": self._in_flight,
                "retrying": len(self._backoff),
                "workers": len(self._workers),
            }
        state["outcomes"] = self._reporter.summary()
        return state

    # ── Dispatch ──────────────────────────────────────────────

    def dispatch(self, results: Iterable[MatchResult]) -> None:
        """Launch every action of every match. Returns without waiting."""
        if not self._workers:
            try:
                self._start_workers(asyncio.get_running_loop())
            except RuntimeError:
                pass  # Not on a loop; attempts queue until start()

        for result in results:
            for action in result.rule.actions:
                try:
                    self._launch(action, result)
                except Exception as e:
                    logger.exception(
                        f"Action {action.type} for rule {result.rule.name} crashed"
                    )
                    self._reporter.report(
                        Outcome(
                            kind=OutcomeKind.DROPPED_ACTION,
                            rule_id=result.rule.id,
                            rule_name=result.rule.name,
                            event_id=result.event.id,
                            action_type=action.type,
                            message=str(e),
                        )
                    )

    def _launch(self, action, result: MatchResult) -> None:
        if isinstance(action, AuditLogAction):
            self._write_audit(result)
        elif isinstance(action, LogAction):
            logger.log(
                logging.getLevelName(action.level.upper()),
                f"RULE ACTION LOG: Rule {result.rule.name} triggered by "
                f"{result.event.type} on {result.event.camera_name}",
            )
        elif isinstance(action, WebhookAction):
            self.enqueue(
                DeliveryAttempt(action=action, event=result.event, rule=result.rule)
            )
        else:
            # Rule parsing rejects unknown kinds; reaching here is a bug
            raise TypeError(f"Unsupported action: {action!r}")

    def _write_audit(self, result: MatchResult) -> None:
        record = AuditRecord.for_trigger(result.event, result.rule)
        tries = 1 + self._config.audit_retries
        last_error: Exception | None = None
        for n in range(1, tries + 1):
            try:
                self._audit.record(record)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Audit write failed ({n}/{tries}) for rule {result.rule.name}: {e}"
                )
        self._reporter.report(
            Outcome(
                kind=OutcomeKind.DROPPED_ACTION,
                rule_id=result.rule.id,
                rule_name=result.rule.name,
                event_id=result.event.id,
                action_type="audit_log",
                attempts=tries,
                message=str(last_error),
            )
        )

    # ── Queue ─────────────────────────────────────────────────

    def enqueue(self, attempt: DeliveryAttempt) -> None:
        """Queue an attempt, shedding the oldest queued one when full."""
        with self._lock:
            shed = self._push_locked(attempt)
        self._after_push(shed)

    def _push_locked(self, attempt: DeliveryAttempt) -> DeliveryAttempt | None:
        shed = None
        if len(self._queue) >= self._config.queue_size:
            shed = self._queue.popleft()
            shed.state = DeliveryState.SHED
        attempt.state = DeliveryState.PENDING
        attempt.scheduled_at = utcnow()
        self._queue.append(attempt)
        return shed

    def _after_push(self, shed: DeliveryAttempt | None) -> None:
        if shed is not None:
            self._report(
                OutcomeKind.OVERLOAD_SHED,
                shed,
                f"queue full ({self._config.queue_size})",
            )
        self._notify()

    def _notify(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wakeup.set()
        else:
            loop.call_soon_threadsafe(wakeup.set)

    def _take(self) -> DeliveryAttempt | None:
        with self._lock:
            if not self._queue:
                return None
            attempt = self._queue.popleft()
            self._in_flight += 1
            attempt.state = DeliveryState.IN_FLIGHT
            attempt.attempt_number += 1
            return attempt

    # ── Workers ───────────────────────────────────────────────

    async def _worker(self, worker_id: int) -> None:
        assert self._wakeup is not None
        while True:
            self._wakeup.clear()
            attempt = self._take()
            if attempt is None:
                await self._wakeup.wait()
                continue
            try:
                await self._attempt(attempt)
            finally:
                with self._lock:
                    self._in_flight -= 1

    async def _attempt(self, attempt: DeliveryAttempt) -> None:
        try:
            await self._webhook.deliver(attempt)
        except asyncio.CancelledError:
            attempt.last_error = "cancelled"
            with self._lock:
                self._queue.appendleft(attempt)
            raise
        except DeliveryError as e:
            self._on_failure(attempt, str(e))
        except Exception as e:
            logger.exception(f"Unexpected webhook error → {attempt.action.url}")
            self._on_failure(attempt, f"{type(e).__name__}: {e}")
        else:
            attempt.state = DeliveryState.SUCCEEDED
            self._report(OutcomeKind.DELIVERED, attempt)

    def _on_failure(self, attempt: DeliveryAttempt, error: str) -> None:
        attempt.last_error = error
        max_retries = attempt.action.max_retries
        if attempt.attempt_number > max_retries:
            attempt.state = DeliveryState.FAILED
            self._report(OutcomeKind.DELIVERY_FAILURE, attempt, error)
            return

        delay = min(
            self._config.backoff_base_seconds * 2 ** (attempt.attempt_number - 1),
            self._config.backoff_max_seconds,
        )
        attempt.state = DeliveryState.RETRYING
        logger.warning(
            f"Webhook attempt {attempt.attempt_number}/{max_retries + 1} failed "
            f"for rule {attempt.rule.name}: {error}; retrying in {delay:.2f}s"
        )
        assert self._loop is not None
        with self._lock:
            handle = self._loop.call_later(delay, self._retry_due, attempt.id)
            self._backoff[attempt.id] = (handle, attempt)

    def _retry_due(self, attempt_id: str) -> None:
        with self._lock:
            entry = self._backoff.pop(attempt_id, None)
            if entry is None:
                return
            shed = self._push_locked(entry[1])
        self._after_push(shed)

    def _report(
        self, kind: OutcomeKind, attempt: DeliveryAttempt, message: str = ""
    ) -> None:
        self._reporter.report(
            Outcome(
                kind=kind,
                rule_id=attempt.rule.id,
                rule_name=attempt.rule.name,
                event_id=attempt.event.id,
                action_type="webhook",
                url=attempt.action.url,
                attempts=attempt.attempt_number,
                message=message,
            )
        )
