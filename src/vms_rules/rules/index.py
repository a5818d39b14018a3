"""Rule index — enabled rules bucketed by event type."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from types import MappingProxyType
from typing import Mapping

from ..exceptions import ConfigurationError
from .models import Rule

logger = logging.getLogger("vms-rules")


class RuleIndex:
    """Fast candidate lookup over an immutable snapshot of enabled rules.

    ``reload`` builds a new bucket map off to the side and publishes it
    with a single reference assignment.
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._buckets: Mapping[str, tuple[Rule, ...]] = MappingProxyType({})
        self._write_lock = threading.Lock()
        rules = list(rules)
        if rules:
            self.reload(rules)

    def reload(self, rules: Iterable[Rule]) -> None:
        seen: set[str] = set()
        building: dict[str, list[Rule]] = {}
        skipped = 0
        for rule in rules:
            if rule.id in seen:
                raise ConfigurationError(f"Duplicate rule id: {rule.id!r}")
            seen.add(rule.id)
            if not rule.enabled:
                skipped += 1
                continue
            building.setdefault(rule.event_type, []).append(rule)
        frozen = MappingProxyType({k: tuple(v) for k, v in building.items()})
        with self._write_lock:
            self._buckets = frozen
        logger.info(
            f"Rule index reloaded: {len(seen) - skipped} active, {skipped} disabled"
        )

    def candidates(self, event_type: str, camera_name: str | None) -> tuple[Rule, ...]:
        bucket = self._buckets.get(event_type, ())
        return tuple(
            r for r in bucket if r.camera_name is None or r.camera_name == camera_name
        )

    def rules(self) -> list[Rule]:
        """All indexed (enabled) rules, grouped by event type."""
        return [r for bucket in self._buckets.values() for r in bucket]

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())
