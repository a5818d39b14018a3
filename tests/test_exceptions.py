"""Tests for custom exception hierarchy."""

import pytest

from vms_rules.exceptions import (
    AuditWriteError,
    ConfigurationError,
    DeliveryError,
    DeliveryHTTPError,
    DeliveryTimeoutError,
    VMSRulesError,
)


class TestExceptionHierarchy:
    def test_configuration_error_inherits(self):
        with pytest.raises(VMSRulesError):
            raise ConfigurationError("duplicate slot")

    def test_delivery_errors_inherit(self):
        with pytest.raises(DeliveryError):
            raise DeliveryTimeoutError("slow")
        with pytest.raises(DeliveryError):
            raise DeliveryHTTPError(502, "https://x")

    def test_http_error_carries_status(self):
        err = DeliveryHTTPError(404, "https://x")
        assert err.status == 404
        assert str(err) == "HTTP 404 from https://x"

    def test_audit_error_inherits(self):
        with pytest.raises(VMSRulesError):
            raise AuditWriteError("disk full")
