"""Tests for the action dispatcher — retries, backpressure and local actions."""

import asyncio
import logging

import pytest

from vms_rules.actions.audit import MemoryAuditLog
from vms_rules.actions.dispatcher import ActionDispatcher
from vms_rules.actions.webhook import WebhookClient
from vms_rules.config import DispatcherConfig
from vms_rules.exceptions import AuditWriteError, DeliveryHTTPError
from vms_rules.reporting import OutcomeKind
from vms_rules.rules.models import (
    AuditLogAction,
    DeliveryAttempt,
    Event,
    LogAction,
    MatchResult,
    Rule,
    WebhookAction,
)


class FakeWebhook(WebhookClient):
    """Records attempts instead of posting; optionally fails or blocks."""

    def __init__(self, fail_times: int = 0, gate: asyncio.Event | None = None):
        super().__init__()
        self.fail_times = fail_times
        self.gate = gate
        self.calls: list[tuple[str, int]] = []

    async def deliver(self, attempt: DeliveryAttempt) -> int:
        self.calls.append((attempt.action.url, attempt.attempt_number))
        if self.gate is not None:
            await self.gate.wait()
        if len(self.calls) <= self.fail_times:
            raise DeliveryHTTPError(500, attempt.action.url)
        return 200


class FlakyAudit(MemoryAuditLog):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.tries = 0

    def record(self, record):
        self.tries += 1
        if self.tries <= self.failures:
            raise AuditWriteError("disk full")
        super().record(record)


def _config(**kwargs) -> DispatcherConfig:
    kwargs.setdefault("backoff_base_seconds", 0.0)
    return DispatcherConfig(**kwargs)


def _match(*actions, rule_id: str = "r1") -> MatchResult:
    rule = Rule(id=rule_id, name=f"Rule {rule_id}", event_type="car", actions=list(actions))
    event = Event(id="e1", type="car", camera_name="gate-1")
    return MatchResult(event=event, rule=rule)


def _attempt(url: str, max_retries: int = 0) -> DeliveryAttempt:
    result = _match()
    return DeliveryAttempt(
        action=WebhookAction(url=url, max_retries=max_retries),
        event=result.event,
        rule=result.rule,
    )


class TestWebhookRetries:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        webhook = FakeWebhook()
        dispatcher = ActionDispatcher(_config(), webhook=webhook)
        await dispatcher.start()

        dispatcher.dispatch([_match(WebhookAction(url="https://x"))])
        assert await dispatcher.drain(timeout=2)

        assert webhook.calls == [("https://x", 1)]
        assert dispatcher.reporter.count(OutcomeKind.DELIVERED) == 1
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_always_failing_exhausts_retries(self):
        webhook = FakeWebhook(fail_times=100)
        dispatcher = ActionDispatcher(_config(), webhook=webhook)
        await dispatcher.start()

        dispatcher.dispatch([_match(WebhookAction(url="https://x", max_retries=2))])
        assert await dispatcher.drain(timeout=2)

        assert [n for _, n in webhook.calls] == [1, 2, 3]
        failures = dispatcher.reporter.recent(OutcomeKind.DELIVERY_FAILURE)
        assert len(failures) == 1
        assert failures[0].attempts == 3
        assert "HTTP 500" in failures[0].message
        assert dispatcher.reporter.count(OutcomeKind.DELIVERED) == 0
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        webhook = FakeWebhook(fail_times=1)
        dispatcher = ActionDispatcher(_config(), webhook=webhook)
        await dispatcher.start()

        dispatcher.dispatch([_match(WebhookAction(url="https://x", max_retries=2))])
        assert await dispatcher.drain(timeout=2)

        assert len(webhook.calls) == 2
        assert dispatcher.reporter.count(OutcomeKind.DELIVERED) == 1
        assert dispatcher.reporter.count(OutcomeKind.DELIVERY_FAILURE) == 0
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially(self):
        webhook = FakeWebhook(fail_times=100)
        dispatcher = ActionDispatcher(
            _config(backoff_base_seconds=0.05, backoff_max_seconds=1.0), webhook=webhook
        )
        await dispatcher.start()
        loop = asyncio.get_running_loop()

        started = loop.time()
        dispatcher.dispatch([_match(WebhookAction(url="https://x", max_retries=2))])
        assert await dispatcher.drain(timeout=2)

        # 0.05s + 0.10s of backoff between the three attempts
        assert loop.time() - started >= 0.15
        await dispatcher.close()


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_oldest_queued_attempt_is_shed(self):
        gate = asyncio.Event()
        webhook = FakeWebhook(gate=gate)
        dispatcher = ActionDispatcher(_config(max_in_flight=1, queue_size=2), webhook=webhook)
        await dispatcher.start()

        dispatcher.enqueue(_attempt("https://hook/a"))
        await asyncio.sleep(0.05)
        assert dispatcher.stats()["in_flight"] == 1

        for name in ("b", "c", "d"):
            dispatcher.enqueue(_attempt(f"https://hook/{name}"))

        shed = dispatcher.reporter.recent(OutcomeKind.OVERLOAD_SHED)
        assert [o.url for o in shed] == ["https://hook/b"]
        assert dispatcher.stats()["queued"] == 2

        gate.set()
        assert await dispatcher.drain(timeout=2)
        delivered = dispatcher.reporter.recent(OutcomeKind.DELIVERED)
        assert sorted(o.url for o in delivered) == [
            "https://hook/a",
            "https://hook/c",
            "https://hook/d",
        ]
        assert dispatcher.reporter.count(OutcomeKind.DELIVERY_FAILURE) == 0
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_dispatch_does_not_wait_for_delivery(self):
        gate = asyncio.Event()
        webhook = FakeWebhook(gate=gate)
        dispatcher = ActionDispatcher(_config(max_in_flight=2), webhook=webhook)
        await dispatcher.start()

        dispatcher.dispatch([_match(*(WebhookAction(url=f"https://x/{i}") for i in range(5)))])
        await asyncio.sleep(0.05)

        stats = dispatcher.stats()
        assert stats["in_flight"] == 2
        assert stats["queued"] == 3
        assert dispatcher.idle is False
        gate.set()
        assert await dispatcher.drain(timeout=2)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_close_reports_undelivered(self):
        webhook = FakeWebhook(gate=asyncio.Event())
        dispatcher = ActionDispatcher(_config(max_in_flight=1), webhook=webhook)
        await dispatcher.start()

        dispatcher.dispatch([_match(WebhookAction(url="https://a"), WebhookAction(url="https://b"))])
        await asyncio.sleep(0.05)
        await dispatcher.close()

        failures = dispatcher.reporter.recent(OutcomeKind.DELIVERY_FAILURE)
        assert sorted(o.url for o in failures) == ["https://a", "https://b"]
        assert dispatcher.idle is True

    @pytest.mark.asyncio
    async def test_dispatch_from_camera_thread(self):
        webhook = FakeWebhook()
        dispatcher = ActionDispatcher(_config(), webhook=webhook)
        await dispatcher.start()

        await asyncio.to_thread(dispatcher.dispatch, [_match(WebhookAction(url="https://x"))])
        assert await dispatcher.drain(timeout=2)
        assert webhook.calls == [("https://x", 1)]
        await dispatcher.close()


class TestLocalActions:
    @pytest.mark.asyncio
    async def test_audit_written_synchronously(self):
        audit = MemoryAuditLog()
        dispatcher = ActionDispatcher(_config(), audit=audit, webhook=FakeWebhook())

        dispatcher.dispatch([_match(AuditLogAction())])

        assert len(audit.records) == 1
        record = audit.records[0]
        assert record.rule.id == "r1"
        assert record.event.id == "e1"
        assert record.action == "rule_trigger"
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_audit_retried_then_succeeds(self):
        audit = FlakyAudit(failures=2)
        dispatcher = ActionDispatcher(_config(audit_retries=2), audit=audit, webhook=FakeWebhook())

        dispatcher.dispatch([_match(AuditLogAction())])

        assert audit.tries == 3
        assert len(audit.records) == 1
        assert dispatcher.reporter.count(OutcomeKind.DROPPED_ACTION) == 0
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_persistent_audit_failure_reported_not_raised(self):
        audit = FlakyAudit(failures=100)
        webhook = FakeWebhook()
        dispatcher = ActionDispatcher(_config(audit_retries=2), audit=audit, webhook=webhook)
        await dispatcher.start()

        # Audit failure must not stop the sibling webhook
        dispatcher.dispatch([_match(AuditLogAction(), WebhookAction(url="https://x"))])
        assert await dispatcher.drain(timeout=2)

        assert audit.tries == 3
        dropped = dispatcher.reporter.recent(OutcomeKind.DROPPED_ACTION)
        assert len(dropped) == 1
        assert dropped[0].action_type == "audit_log"
        assert webhook.calls == [("https://x", 1)]
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_log_action(self, caplog):
        dispatcher = ActionDispatcher(_config(), webhook=FakeWebhook())
        with caplog.at_level(logging.INFO, logger="vms-rules"):
            dispatcher.dispatch([_match(LogAction())])
        assert any("RULE ACTION LOG: Rule Rule r1" in r.getMessage() for r in caplog.records)
        await dispatcher.close()
