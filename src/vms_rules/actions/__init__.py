"""Action execution for matched rules.

- "audit_log": synchronous write to the audit sink, retried locally
- "log": line on the application logger
- "webhook": queued HTTP POST with timeout, backoff and load shedding
"""

from .audit import AuditRecord, AuditSink, JsonlAuditLog, MemoryAuditLog
from .dispatcher import ActionDispatcher
from .webhook import WebhookClient

__all__ = [
    "ActionDispatcher",
    "AuditRecord",
    "AuditSink",
    "JsonlAuditLog",
    "MemoryAuditLog",
    "WebhookClient",
]
