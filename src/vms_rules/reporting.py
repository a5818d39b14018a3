"""Outcome reporting for dispatched actions.

The dispatcher never raises delivery problems back into the event path.
Instead every terminal outcome is handed to an ``OutcomeReporter``,
which logs it, counts it, keeps a bounded replay history and fans it
out to subscribers (metrics exporters, alert relays, tests).
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
import uuid
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .rules.models import utcnow

logger = logging.getLogger("vms-rules")


class OutcomeKind(str, Enum):
    DELIVERED = "delivered"
    DELIVERY_FAILURE = "delivery_failure"  # Endpoint problem, retries exhausted
    OVERLOAD_SHED = "overload_shed"  # Capacity problem, dropped from the queue
    DROPPED_ACTION = "dropped_action"  # Local action failed persistently


_LOG_LEVELS = {
    OutcomeKind.DELIVERED: logging.INFO,
    OutcomeKind.DELIVERY_FAILURE: logging.ERROR,
    OutcomeKind.OVERLOAD_SHED: logging.WARNING,
    OutcomeKind.DROPPED_ACTION: logging.ERROR,
}


class Outcome(BaseModel):
    id: str = Field(default_factory=lambda: f"out_{uuid.uuid4().hex[:10]}")
    kind: OutcomeKind
    rule_id: str = ""
    rule_name: str = ""
    event_id: str = ""
    action_type: str = ""
    url: str = ""
    attempts: int = 0
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


OutcomeHandler = Callable[[Outcome], Awaitable[None] | None]


class OutcomeReporter:
    """Thread-safe sink for dispatch outcomes with subscriber fanout."""

    def __init__(self, history_size: int = 200) -> None:
        self._history: deque[Outcome] = deque(maxlen=history_size)
        self._counts: Counter[str] = Counter()
        self._subs: dict[int, OutcomeHandler] = {}
        self._id_gen = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._lock = threading.RLock()

    def subscribe(self, handler: OutcomeHandler) -> int:
        """Subscribe a sync or async handler. Returns subscription id."""
        sub_id = next(self._id_gen)
        with self._lock:
            self._subs[sub_id] = handler
        return sub_id

    def unsubscribe(self, sub_id: int) -> bool:
        with self._lock:
            return self._subs.pop(sub_id, None) is not None

    def report(self, outcome: Outcome) -> None:
        logger.log(
            _LOG_LEVELS[outcome.kind],
            f"{outcome.kind.value}: rule={outcome.rule_name or outcome.rule_id} "
            f"event={outcome.event_id} action={outcome.action_type}"
            + (f" url={outcome.url}" if outcome.url else "")
            + (f" attempts={outcome.attempts}" if outcome.attempts else "")
            + (f" | {outcome.message}" if outcome.message else ""),
        )
        with self._lock:
            self._history.append(outcome)
            self._counts[outcome.kind.value] += 1
            handlers = list(self._subs.values())

        for handler in handlers:
            try:
                result = handler(outcome)
            except Exception:
                logger.exception("Outcome handler failed")
                continue
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Async outcome handler skipped: no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        async def _run() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("Outcome handler failed")

        task = loop.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def recent(self, kind: OutcomeKind | str | None = None, limit: int = 50) -> list[Outcome]:
        """Most recent outcomes, newest last, optionally filtered by kind."""
        with self._lock:
            items = list(self._history)
        if kind:
            wanted = OutcomeKind(kind)
            items = [o for o in items if o.kind is wanted]
        return items[-limit:] if limit > 0 else []

    def count(self, kind: OutcomeKind | str) -> int:
        with self._lock:
            return self._counts[OutcomeKind(kind).value]

    def summary(self) -> dict:
        with self._lock:
            return {kind.value: self._counts[kind.value] for kind in OutcomeKind}
