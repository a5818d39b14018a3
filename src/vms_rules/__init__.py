"""vms-rules — rule evaluation and action dispatch for video management."""

__version__ = "0.3.0"

from .exceptions import (
    AuditWriteError,
    ConfigurationError,
    DeliveryError,
    DeliveryHTTPError,
    DeliveryTimeoutError,
    VMSRulesError,
)

__all__ = [
    "__version__",
    "VMSRulesError",
    "ConfigurationError",
    "DeliveryError",
    "DeliveryHTTPError",
    "DeliveryTimeoutError",
    "AuditWriteError",
]
