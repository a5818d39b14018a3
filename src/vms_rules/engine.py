"""Engine façade — event entry point and administrative reloads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import Any

from .actions.audit import AuditSink, JsonlAuditLog, MemoryAuditLog
from .actions.dispatcher import ActionDispatcher
from .actions.webhook import WebhookClient
from .config import AuditConfig, EngineConfig
from .exceptions import ConfigurationError
from .reporting import OutcomeReporter
from .rules.index import RuleIndex
from .rules.lookup import LookupRegistry
from .rules.matcher import MatchEngine
from .rules.models import (
    Event,
    LookupList,
    MatchResult,
    Rule,
    normalize_item,
    parse_lists,
    parse_rules,
)
from .rules.schedule import ScheduleEvaluator

logger = logging.getLogger("vms-rules")


def create_audit_sink(config: AuditConfig) -> AuditSink:
    if config.path:
        return JsonlAuditLog(config.path)
    return MemoryAuditLog()


class RuleEngine:
    """Receives detection events, matches them and dispatches actions.

    ``on_event`` is safe to call from any camera source concurrently and
    never waits on webhook delivery. ``reload_rules``, ``reload_lists`` and
    ``reload_all`` are the only mutation surface; each validates first and
    swaps in a new snapshot only when the whole set is accepted.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        audit: AuditSink | None = None,
        webhook: WebhookClient | None = None,
        reporter: OutcomeReporter | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self.schedule = ScheduleEvaluator(self._config.timezone)
        self.index = RuleIndex()
        self.registry = LookupRegistry()
        self.matcher = MatchEngine(self.index, self.registry, self.schedule)
        self.dispatcher = ActionDispatcher(
            self._config.dispatcher,
            audit=audit if audit is not None else create_audit_sink(self._config.audit),
            webhook=webhook,
            reporter=reporter,
        )
        self._admin_lock = threading.Lock()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def reporter(self) -> OutcomeReporter:
        return self.dispatcher.reporter

    # ── Event path ────────────────────────────────────────────

    def on_event(self, event: Event) -> list[MatchResult]:
        """Match ``event`` and launch the actions of every matching rule."""
        results = self.matcher.evaluate(event)
        if not results:
            logger.debug(f"No rule matched {event.type} event {event.id}")
            return results
        try:
            self.dispatcher.dispatch(results)
        except Exception:
            # Delivery problems must never reach the ingestion caller
            logger.exception(f"Dispatch failed for event {event.id}")
        return results

    # ── Administrative operations ─────────────────────────────

    def reload_rules(self, rules: Iterable[Rule | dict[str, Any]]) -> int:
        """Validate and atomically replace the rule set. Returns active count."""
        parsed = self._coerce(rules, Rule, parse_rules)
        with self._admin_lock:
            self._validate_rules(parsed, self.registry.has_list)
            self.index.reload(parsed)
            return len(self.index)

    def reload_all(
        self,
        rules: Iterable[Rule | dict[str, Any]],
        lists: Iterable[LookupList | dict[str, Any]],
    ) -> tuple[int, int]:
        """Replace lists and rules together; nothing is swapped unless both pass.

        Returns (active rule count, list count).
        """
        parsed_rules = self._coerce(rules, Rule, parse_rules)
        parsed_lists = self._coerce(lists, LookupList, parse_lists)
        names = {normalize_item(lookup.name) for lookup in parsed_lists}
        with self._admin_lock:
            self._validate_rules(
                parsed_rules, lambda name: normalize_item(name) in names
            )
            self.registry.reload(parsed_lists)
            self.index.reload(parsed_rules)
            return len(self.index), len(parsed_lists)

    def _validate_rules(self, rules: list[Rule], list_exists) -> None:
        ids: set[str] = set()
        for rule in rules:
            if rule.id in ids:
                raise ConfigurationError(f"Duplicate rule id: {rule.id!r}")
            ids.add(rule.id)
            self.schedule.validate(rule.schedules, rule.id)
            for condition in rule.conditions:
                if not list_exists(condition.list_name):
                    raise ConfigurationError(
                        f"Rule {rule.id!r} references unknown lookup list "
                        f"{condition.list_name!r}"
                    )

    def reload_lists(self, lists: Iterable[LookupList | dict[str, Any]]) -> int:
        """Atomically replace every lookup list. Returns list count."""
        parsed = self._coerce(lists, LookupList, parse_lists)
        with self._admin_lock:
            self.registry.reload(parsed)
            for rule in self.index.rules():
                for condition in rule.conditions:
                    if not self.registry.has_list(condition.list_name):
                        logger.warning(
                            f"Rule '{rule.name}' references lookup list "
                            f"{condition.list_name!r} which is no longer loaded"
                        )
            return len(parsed)

    @staticmethod
    def _coerce(items, model, parser) -> list:
        items = list(items)
        raw = [i for i in items if not isinstance(i, model)]
        if not raw:
            return items
        parsed = iter(parser(raw))
        return [i if isinstance(i, model) else next(parsed) for i in items]

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        await self.dispatcher.start()

    async def drain(self, timeout: float | None = None) -> bool:
        return await self.dispatcher.drain(timeout)

    async def close(self) -> None:
        await self.dispatcher.close()

    def stats(self) -> dict:
        return {
            "rules": len(self.index),
            "lists": len(self.registry.names()),
            "timezone": self._config.timezone,
            "dispatcher": self.dispatcher.stats(),
        }
