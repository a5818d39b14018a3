"""Audit sinks for rule-trigger records.

``AuditLogAction`` writes go through an ``AuditSink`` synchronously.
Two sinks ship here: a JSONL file appender for deployments and a
bounded in-memory sink for tests and the CLI replay command.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from ..exceptions import AuditWriteError
from ..rules.models import Event, Rule, utcnow

RULE_TRIGGER = "rule_trigger"


class AuditRecord(BaseModel):
    event: Event
    rule: Rule
    occurred_at: datetime = Field(default_factory=utcnow)
    action: str = RULE_TRIGGER
    description: str = ""

    @classmethod
    def for_trigger(cls, event: Event, rule: Rule) -> AuditRecord:
        return cls(
            event=event,
            rule=rule,
            description=(
                f"Rule {rule.name} triggered by {event.type} on {event.camera_name}"
            ),
        )

    def to_json_dict(self) -> dict:
        return {
            "timestamp": self.occurred_at.isoformat(),
            "action": self.action,
            "resource_type": "rule",
            "resource_id": self.rule.id,
            "description": self.description,
            "metadata": {
                "event_id": self.event.id,
                "type": self.event.type,
                "camera": self.event.camera_name,
                "attributes": dict(self.event.attributes),
            },
        }


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


class JsonlAuditLog:
    """Appends audit records to ``<path>`` as JSON lines."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def record(self, record: AuditRecord) -> None:
        line = json.dumps(record.to_json_dict())
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise AuditWriteError(f"Cannot append to {self.path}: {e}") from e


class MemoryAuditLog:
    """Bounded in-memory audit sink."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[AuditRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)
