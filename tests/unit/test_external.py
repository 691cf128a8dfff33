"""Policy hot-reload, circuit breaker, escalation webhook, scheduler wrapper."""

import json

import httpx
import pytest

from finops_sla.config import EventKind
from finops_sla.sla.domain import NotificationEvent, ThresholdPolicy
from finops_sla.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    EscalationNotifier,
    PolicyConfigManager,
    SLAScheduler,
)

from tests.helpers import ist, make_task


class TestPolicyConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = PolicyConfigManager()
        policy = manager.load(tmp_path / "absent.yaml")

        assert policy == ThresholdPolicy()
        assert manager.get_policy().pre_start_lead_minutes == 15

    def test_loads_nested_sla_section(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text("sla:\n  pre_start_lead_minutes: 20\n  escalation_delay_minutes: 30\n")

        policy = PolicyConfigManager().load(path)

        assert policy.pre_start_lead_minutes == 20
        assert policy.escalation_delay_minutes == 30
        assert policy.justification_min_length == 10

    def test_reload_swaps_policy_and_notifies(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text("evaluation_interval_seconds: 30\n")
        manager = PolicyConfigManager()
        manager.load(path)
        seen = []
        manager.on_change(lambda old, new: seen.append((old.evaluation_interval_seconds, new.evaluation_interval_seconds)))

        path.write_text("evaluation_interval_seconds: 10\n")
        assert manager.reload() is True

        assert manager.get_policy().evaluation_interval_seconds == 10
        assert seen == [(30, 10)]

    def test_invalid_reload_keeps_previous_policy(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text("justification_min_length: 25\n")
        manager = PolicyConfigManager()
        manager.load(path)

        path.write_text("justification_min_length: -3\n")
        assert manager.reload() is False
        assert manager.get_policy().justification_min_length == 25

        path.write_text("timezone: Not/AZone\n")
        assert manager.reload() is False
        assert manager.get_policy().justification_min_length == 25

    def test_unloaded_manager_raises(self):
        with pytest.raises(RuntimeError):
            PolicyConfigManager().get_policy()


class TestCircuitBreaker:

    def test_opens_after_threshold_and_recovers(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=10, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

        now[0] = 10.0
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=5, clock=lambda: now[0])
        breaker.record_failure()
        now[0] = 6.0
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN


def _event(kind=EventKind.ESCALATED) -> NotificationEvent:
    return NotificationEvent(
        id="n-1",
        task_id="00000000-0000-0000-0000-000000000001",
        episode=1,
        event_kind=kind,
        created_at=ist(9, 30, 1),
        payload="Escalation - Clearing file validation is overdue by 15 min",
    )


class TestEscalationNotifier:

    async def test_posts_block_kit_message(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = EscalationNotifier(
            webhook_url="https://hooks.example.test/sla",
            channel="#ops",
            http_client=client,
        )

        assert await notifier.notify(make_task(), _event()) is True
        assert requests[0]["channel"] == "#ops"
        assert requests[0]["blocks"][0]["text"]["text"] == "SLA Escalation"
        await notifier.close()

    async def test_unconfigured_webhook_is_skipped(self):
        notifier = EscalationNotifier(webhook_url="")
        assert await notifier.notify(make_task(), _event()) is False

    async def test_failures_trip_the_breaker(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        notifier = EscalationNotifier(
            webhook_url="https://hooks.example.test/sla",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            circuit_breaker=breaker,
            max_retries=1,
        )

        assert await notifier.notify(make_task(), _event()) is False
        assert breaker.state == CircuitState.OPEN
        assert await notifier.notify(make_task(), _event(EventKind.JUSTIFICATION_REQUIRED)) is False
        await notifier.close()


class TestSLAScheduler:

    async def test_registers_non_overlapping_jobs(self):
        async def tick():
            return None

        scheduler = SLAScheduler(interval_seconds=30, timezone="Asia/Kolkata")
        await scheduler.start(tick, tick)
        try:
            assert scheduler.is_running
            job = scheduler._scheduler.get_job(SLAScheduler.EVALUATION_JOB_ID)
            assert job.max_instances == 1
            assert job.coalesce is True
            assert scheduler._scheduler.get_job(SLAScheduler.PURGE_JOB_ID) is not None

            scheduler.reschedule(10)
            assert scheduler.interval_seconds == 10
        finally:
            await scheduler.stop()

        assert not scheduler.is_running
