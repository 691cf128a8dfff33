"""Notification ledger reads, read/archive mutations and dashboard counts."""

from datetime import date

import pytest
from pydantic import ValidationError

from finops_sla.config import LifecycleStatus, EventKind, NotificationStatus
from finops_sla.core import ResourceNotFoundException
from finops_sla.sla.application import NotificationFilter

from tests.helpers import ist


@pytest.fixture
async def ledger(services, clock):
    """
    Five rows over two days:
    - recon: missed start on the 14th, then completed (1 row)
    - clearing: escalated at 09:30:01 on the 15th (3 rows)
    - settlement: pre-start warning at 09:46 on the 15th (1 row)
    """
    clearing = await services.registry.register_task("Clearing file validation", ist(9, 0), 15)
    settlement = await services.registry.register_task("Settlement upload", ist(10, 0), 30)
    recon = await services.registry.register_task("Nostro reconciliation", ist(7, 0, day=14), 60)

    clock.set(ist(7, 5, day=14))
    await services.evaluation.sync_now()
    await services.registry.complete_task(recon.id, ist(7, 10, day=14))

    clock.set(ist(9, 30, 1))
    await services.evaluation.sync_now()
    clock.set(ist(9, 46))
    await services.evaluation.sync_now()

    return {"clearing": clearing, "settlement": settlement, "recon": recon}


class TestListing:

    async def test_newest_first_with_counts(self, services, ledger):
        page = await services.notifications.list_notifications()

        assert page.total == 5
        assert page.unread_count == 5
        assert page.has_more is False
        created = [n.created_at for n in page.notifications]
        assert created == sorted(created, reverse=True)
        assert page.notifications[0].task_name == "Settlement upload"
        assert page.notifications[-1].task_name == "Nostro reconciliation"

    async def test_filter_by_kind(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(kind=EventKind.MISSED_START)
        )

        assert page.total == 2
        assert {n.task_id for n in page.notifications} == {
            ledger["clearing"].id, ledger["recon"].id
        }
        assert all(n.priority == "high" for n in page.notifications)

    async def test_filter_by_task(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(task_id=ledger["clearing"].id)
        )
        assert {n.event_kind for n in page.notifications} == {
            EventKind.MISSED_START, EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED
        }

    async def test_unparseable_task_id_matches_nothing(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(task_id="not-a-uuid")
        )
        assert page.total == 0
        assert page.notifications == []

    async def test_day_filter_uses_canonical_zone(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(day=date(2024, 1, 14))
        )
        assert [n.task_id for n in page.notifications] == [ledger["recon"].id]

        page = await services.notifications.list_notifications(
            NotificationFilter(day=date(2024, 1, 15))
        )
        assert page.total == 4

    async def test_date_range(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(date_from=ist(9, 40), date_to=ist(23, 59))
        )
        assert [n.event_kind for n in page.notifications] == [EventKind.PRE_START]

    def test_inverted_range_is_rejected(self):
        with pytest.raises(ValidationError):
            NotificationFilter(date_from=ist(10, 0), date_to=ist(9, 0))

    async def test_pagination(self, services, ledger):
        first = await services.notifications.list_notifications(NotificationFilter(limit=2))
        second = await services.notifications.list_notifications(NotificationFilter(limit=2, offset=2))
        last = await services.notifications.list_notifications(NotificationFilter(limit=2, offset=4))

        assert first.has_more and second.has_more
        assert not last.has_more
        ids = [n.id for page in (first, second, last) for n in page.notifications]
        assert len(ids) == len(set(ids)) == 5


class TestLiveText:

    async def test_countdown_is_rendered_at_read_time(self, services, clock, ledger):
        clock.set(ist(9, 50))
        page = await services.notifications.list_notifications(
            NotificationFilter(task_id=ledger["settlement"].id)
        )
        view = page.notifications[0]

        assert view.payload.endswith("14 min remaining to start")
        assert view.live_text == "Starts in 10 min"
        assert view.task_status == LifecycleStatus.PRE_START

        clock.set(ist(10, 45))
        view = (await services.notifications.list_notifications(
            NotificationFilter(task_id=ledger["settlement"].id)
        )).notifications[0]
        assert view.live_text == "Overdue by 15 min"
        assert view.minutes_overdue == 15

    async def test_rows_from_earlier_episode_read_as_closed(self, services, clock, ledger):
        task_id = ledger["settlement"].id
        await services.registry.complete_task(task_id, ist(10, 20))
        clock.set(ist(10, 21))
        await services.evaluation.sync_now()
        await services.registry.start_next_episode(task_id, ist(10, 0, day=17))

        page = await services.notifications.list_notifications(NotificationFilter(task_id=task_id))
        assert page.notifications[0].live_text == "Episode closed"
        assert page.notifications[0].task_status is None


class TestReadAndArchive:

    async def test_read_is_idempotent_and_keeps_first_reader(self, services, clock, ledger):
        page = await services.notifications.list_notifications()
        target = page.notifications[0].id

        await services.notifications.acknowledge_read(target, "alice")
        clock.advance(minutes=5)
        await services.notifications.acknowledge_read(target, "bob")

        unread = await services.notifications.list_notifications(
            NotificationFilter(status=NotificationStatus.READ)
        )
        assert [n.id for n in unread.notifications] == [target]
        assert unread.notifications[0].read_by == "alice"

    async def test_read_unknown_or_archived(self, services, ledger):
        with pytest.raises(ResourceNotFoundException):
            await services.notifications.acknowledge_read("00000000-0000-0000-0000-00000000beef", "alice")

        target = (await services.notifications.list_notifications()).notifications[0].id
        await services.notifications.archive(target, "alice")
        with pytest.raises(ResourceNotFoundException):
            await services.notifications.acknowledge_read(target, "alice")

    async def test_archive_hides_row_and_is_not_repeatable(self, services, ledger):
        target = (await services.notifications.list_notifications()).notifications[0].id

        await services.notifications.archive(target, "alice")
        with pytest.raises(ResourceNotFoundException):
            await services.notifications.archive(target, "alice")

        active = await services.notifications.list_notifications()
        archived = await services.notifications.list_notifications(
            NotificationFilter(status=NotificationStatus.ARCHIVED)
        )
        everything = await services.notifications.list_notifications(
            NotificationFilter(status=NotificationStatus.ALL)
        )
        assert active.total == 4
        assert [n.id for n in archived.notifications] == [target]
        assert everything.total == 5
        assert archived.unread_count == 0

    async def test_archived_kind_is_not_re_emitted(self, services, clock, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(task_id=ledger["settlement"].id)
        )
        await services.notifications.archive(page.notifications[0].id, "alice")

        clock.set(ist(9, 50))
        report = await services.evaluation.sync_now()

        assert report.events_emitted == 0

    async def test_read_all(self, services, ledger):
        target = (await services.notifications.list_notifications()).notifications[0].id
        await services.notifications.archive(target, "alice")

        assert await services.notifications.acknowledge_all_read("alice") == 4
        assert await services.notifications.acknowledge_all_read("alice") == 0

        page = await services.notifications.list_notifications(
            NotificationFilter(status=NotificationStatus.UNREAD)
        )
        assert page.total == 0


class TestSummaries:

    async def test_kind_summary_covers_every_kind(self, services):
        summary = await services.notifications.kind_summary()

        assert [s.event_kind for s in summary] == [
            EventKind.PRE_START, EventKind.MISSED_START,
            EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED,
        ]
        assert all(s.total_count == 0 for s in summary)

    async def test_kind_summary_counts(self, services, ledger):
        page = await services.notifications.list_notifications(
            NotificationFilter(kind=EventKind.MISSED_START)
        )
        await services.notifications.acknowledge_read(page.notifications[0].id, "alice")

        summary = {s.event_kind: s for s in await services.notifications.kind_summary()}
        assert summary[EventKind.MISSED_START].total_count == 2
        assert summary[EventKind.MISSED_START].unread_count == 1
        assert summary[EventKind.ESCALATED].priority == "critical"

    async def test_dashboard(self, services, clock, ledger):
        dashboard = await services.notifications.dashboard_summary()
        assert dashboard.total == 5
        assert dashboard.unread == 5
        assert dashboard.escalated == 1
        assert dashboard.justification_pending == 1

        await services.gate.submit_justification(ledger["clearing"].id, "Vendor delay", "ops-lead")

        dashboard = await services.notifications.dashboard_summary()
        assert dashboard.total == 4
        assert dashboard.escalated == 1
        assert dashboard.justification_pending == 0

    async def test_dashboard_on_empty_store(self, services):
        dashboard = await services.notifications.dashboard_summary()
        assert dashboard.model_dump() == {
            "total": 0, "unread": 0, "escalated": 0, "justification_pending": 0
        }
