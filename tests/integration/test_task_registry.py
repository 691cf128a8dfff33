"""Task registry adapter: registration, completion, episodes, live status."""

from datetime import datetime, timezone

import pytest

from finops_sla.config import LifecycleStatus, EventKind
from finops_sla.core import InvalidStateException, ResourceNotFoundException
from finops_sla.sla.application import NotificationFilter

from tests.helpers import ist


class TestRegistration:

    async def test_naive_start_is_read_in_canonical_zone(self, services):
        task = await services.registry.register_task("Clearing file validation", datetime(2024, 1, 15, 9, 0), 15)

        stored = await services.registry.get_task(task.id)
        assert stored.scheduled_start == ist(9, 0)
        assert stored.scheduled_start.astimezone(timezone.utc).hour == 3
        assert stored.lifecycle_status == LifecycleStatus.PENDING
        assert stored.episode == 1

    async def test_unknown_task(self, services):
        with pytest.raises(ResourceNotFoundException):
            await services.registry.get_task("00000000-0000-0000-0000-00000000beef")
        with pytest.raises(ResourceNotFoundException):
            await services.registry.get_task("nope")


class TestCompletion:

    @pytest.fixture
    async def task(self, services):
        return await services.registry.register_task("Clearing file validation", ist(9, 0), 15)

    async def test_completion_defaults_to_now(self, services, clock, task):
        clock.set(ist(9, 7))
        completed = await services.registry.complete_task(task.id)

        assert completed.completed_at == ist(9, 7)

    async def test_completion_time_is_immutable(self, services, task):
        await services.registry.complete_task(task.id, ist(9, 10))

        # Same value again is accepted
        again = await services.registry.complete_task(task.id, ist(9, 10))
        assert again.completed_at == ist(9, 10)

        with pytest.raises(InvalidStateException):
            await services.registry.complete_task(task.id, ist(9, 12))

        stored = await services.registry.get_task(task.id)
        assert stored.completed_at == ist(9, 10)

    async def test_unknown_task(self, services):
        with pytest.raises(ResourceNotFoundException):
            await services.registry.complete_task("00000000-0000-0000-0000-00000000beef", ist(9, 0))


class TestEpisodes:

    @pytest.fixture
    async def escalated(self, services, clock):
        task = await services.registry.register_task("Clearing file validation", ist(9, 0), 15)
        clock.set(ist(9, 30, 1))
        await services.evaluation.sync_now()
        return task

    async def test_refused_while_awaiting_justification(self, services, escalated):
        with pytest.raises(InvalidStateException):
            await services.registry.start_next_episode(escalated.id, ist(9, 0, day=16))

        stored = await services.registry.get_task(escalated.id)
        assert stored.episode == 1

    async def test_new_episode_re_arms_every_notification(self, services, clock, escalated):
        await services.gate.submit_justification(escalated.id, "Vendor delay", "ops-lead")
        await services.registry.complete_task(escalated.id, ist(9, 40))

        started = await services.registry.start_next_episode(escalated.id, ist(9, 0, day=16), 20)
        assert started.episode == 2
        assert started.sla_minutes == 20

        stored = await services.registry.get_task(escalated.id)
        assert stored.lifecycle_status == LifecycleStatus.PENDING
        assert stored.completed_at is None
        assert stored.justification is None
        assert stored.escalated_at is None

        clock.set(ist(9, 40, 1, day=16))
        report = await services.evaluation.sync_now()
        assert report.events_emitted == 3

        page = await services.notifications.list_notifications(
            NotificationFilter(task_id=escalated.id, kind=EventKind.ESCALATED)
        )
        assert sorted(n.episode for n in page.notifications) == [1, 2]

        # The new episode needs its own justification
        record = await services.gate.submit_justification(escalated.id, "Second delay", "ops-lead")
        assert record.episode == 2

    async def test_unknown_task(self, services):
        with pytest.raises(ResourceNotFoundException):
            await services.registry.start_next_episode("00000000-0000-0000-0000-00000000beef", ist(9, 0))


class TestLiveStatus:

    async def test_live_status_runs_ahead_of_stored(self, services, clock):
        task = await services.registry.register_task("Clearing file validation", ist(9, 0), 15)
        clock.set(ist(9, 10))

        view = await services.registry.get_task_status(task.id)

        assert view.stored_status == LifecycleStatus.PENDING
        assert view.live_status == LifecycleStatus.DUE
        assert view.countdown == "5 min remaining"
        assert view.minutes_remaining == 5
        assert view.breach_at == ist(9, 15)
        assert view.escalate_at == ist(9, 30)

        # Reading never writes
        assert (await services.registry.get_task(task.id)).last_evaluated_at is None

    async def test_acknowledged_status_reports_justification(self, services, clock):
        task = await services.registry.register_task("Clearing file validation", ist(9, 0), 15)
        clock.set(ist(9, 30, 1))
        await services.evaluation.sync_now()
        await services.gate.submit_justification(task.id, "Vendor delay", "ops-lead")

        clock.set(ist(9, 50))
        view = await services.registry.get_task_status(task.id)

        assert view.live_status == LifecycleStatus.ACKNOWLEDGED
        assert view.justification == "Vendor delay"
        assert view.countdown == "Overdue by 35 min"
