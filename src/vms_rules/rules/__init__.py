"""Rules — data models, lookup registry, schedules, index, matching and storage."""

from .index import RuleIndex
from .lookup import LookupRegistry
from .matcher import MatchEngine
from .models import (
    AuditLogAction,
    DeliveryAttempt,
    DeliveryState,
    Event,
    ListCondition,
    ListMode,
    ListType,
    LogAction,
    LookupList,
    MatchResult,
    Rule,
    ScheduleSlot,
    WebhookAction,
)
from .schedule import ScheduleEvaluator
from .store import ListsStore, RulesStore

__all__ = [
    "AuditLogAction",
    "DeliveryAttempt",
    "DeliveryState",
    "Event",
    "ListCondition",
    "ListMode",
    "ListType",
    "ListsStore",
    "LogAction",
    "LookupList",
    "LookupRegistry",
    "MatchEngine",
    "MatchResult",
    "Rule",
    "RuleIndex",
    "RulesStore",
    "ScheduleEvaluator",
    "ScheduleSlot",
    "WebhookAction",
]
