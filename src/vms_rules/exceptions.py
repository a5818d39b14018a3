"""Custom exception hierarchy for vms-rules.

All vms-rules exceptions inherit from VMSRulesError, allowing callers
to catch broad or specific errors:

    try:
        engine.reload_rules(store.load())
    except ConfigurationError as e:
        print(f"Rejected rule set: {e}")
    except VMSRulesError as e:
        print(f"vms-rules error: {e}")

Delivery errors never reach ``RuleEngine.on_event`` callers; the
dispatcher catches them and turns them into reported outcomes.
"""

from __future__ import annotations


class VMSRulesError(Exception):
    """Base exception for all vms-rules errors."""


class ConfigurationError(VMSRulesError):
    """Raised when a rule set, lookup list set or config file is invalid.

    A reload that raises this leaves the previous snapshot active.
    """


class DeliveryError(VMSRulesError):
    """Raised when a single webhook delivery attempt fails."""


class DeliveryTimeoutError(DeliveryError):
    """Raised when a webhook attempt exceeds its timeout."""


class DeliveryHTTPError(DeliveryError):
    """Raised when a webhook endpoint answers with a non-2xx status."""

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url


class AuditWriteError(VMSRulesError):
    """Raised by an audit sink when a record cannot be written."""
