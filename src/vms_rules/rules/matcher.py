"""Match engine — finds every rule an incoming detection event satisfies."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .index import RuleIndex
from .lookup import LookupRegistry
from .models import Event, ListCondition, ListMode, MatchResult, Rule, utcnow
from .schedule import ScheduleEvaluator

logger = logging.getLogger("vms-rules")

ConditionCheck = Callable[[Rule, Event], bool]


class MatchEngine:
    """Evaluates candidate rules against one event.

    Every rule is the AND of a closed set of checks: event type,
    camera, schedule armed-ness and lookup-list membership. Unmet
    conditions produce no match; nothing here raises for them.
    """

    def __init__(
        self,
        index: RuleIndex,
        registry: LookupRegistry,
        schedule: ScheduleEvaluator,
    ) -> None:
        self._index = index
        self._registry = registry
        self._schedule = schedule
        self._checks: tuple[ConditionCheck, ...] = (
            self._type_matches,
            self._camera_matches,
            self._schedule_armed,
            self._lists_satisfied,
        )

    def evaluate(self, event: Event, now: datetime | None = None) -> list[MatchResult]:
        matched_at = now or utcnow()
        results = []
        for rule in self._index.candidates(event.type, event.camera_name):
            if all(check(rule, event) for check in self._checks):
                logger.info(
                    f"Rule '{rule.name}' matched {event.type} event {event.id} "
                    f"on {event.camera_name or 'unknown camera'}"
                )
                results.append(MatchResult(event=event, rule=rule, matched_at=matched_at))
        return results

    # ── Condition checks ──────────────────────────────────────

    @staticmethod
    def _type_matches(rule: Rule, event: Event) -> bool:
        return rule.event_type == event.type

    @staticmethod
    def _camera_matches(rule: Rule, event: Event) -> bool:
        return rule.camera_name is None or rule.camera_name == event.camera_name

    def _schedule_armed(self, rule: Rule, event: Event) -> bool:
        armed = self._schedule.is_armed(rule.schedules, event.occurred_at)
        if not armed:
            logger.debug(f"Rule '{rule.name}' not armed at {event.occurred_at}")
        return armed

    def _lists_satisfied(self, rule: Rule, event: Event) -> bool:
        return all(self._list_condition_holds(c, event) for c in rule.conditions)

    def _list_condition_holds(self, condition: ListCondition, event: Event) -> bool:
        value = event.attributes.get(condition.attribute, "").strip()
        if not value:
            # List-gated rules fail closed when the attribute is missing
            return False
        member = self._registry.membership(condition.list_name, value)
        if condition.mode is ListMode.IN_LIST:
            return member
        return not member
