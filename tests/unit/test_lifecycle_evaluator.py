"""Lifecycle evaluator: status derivation, gate holds, non-regression."""

from datetime import datetime, timedelta, timezone

import pytest

from finops_sla.config import LifecycleStatus, EventKind
from finops_sla.sla.domain import LifecycleEvaluator, TaskDeadlines, ThresholdPolicy

from tests.helpers import ist, make_task


class TestDeadlines:

    def test_thresholds_for_default_policy(self, policy):
        deadlines = TaskDeadlines.for_task(make_task(sla_minutes=15), policy)

        assert deadlines.pre_start_at == ist(8, 45)
        assert deadlines.scheduled_start == ist(9, 0)
        assert deadlines.breach_at == ist(9, 15)
        assert deadlines.escalate_at == ist(9, 30)

    def test_grace_minutes_extend_breach_and_escalation(self):
        policy = ThresholdPolicy(sla_grace_minutes=5, timezone="Asia/Kolkata")
        deadlines = TaskDeadlines.for_task(make_task(sla_minutes=15), policy)

        assert deadlines.breach_at == ist(9, 20)
        assert deadlines.escalate_at == ist(9, 35)

    def test_naive_start_is_read_in_canonical_zone(self, policy):
        task = make_task(scheduled_start=datetime(2024, 1, 15, 9, 0))
        deadlines = TaskDeadlines.for_task(task, policy)

        assert deadlines.scheduled_start == ist(9, 0)
        # 09:00 IST is 03:30 UTC
        assert deadlines.scheduled_start.utcoffset() == timedelta(hours=5, minutes=30)


class TestScenarioA:
    """09:00 start, 15 min SLA, 15 min lead, 15 min escalation delay."""

    @pytest.mark.parametrize("now, expected_status, expected_events", [
        (ist(8, 44), LifecycleStatus.PENDING, ()),
        (ist(8, 46, 1), LifecycleStatus.PRE_START, (EventKind.PRE_START,)),
        (ist(9, 0, 1), LifecycleStatus.DUE, (EventKind.MISSED_START,)),
        (ist(9, 15, 1), LifecycleStatus.SLA_BREACHED, (EventKind.MISSED_START,)),
        (ist(9, 30, 1), LifecycleStatus.ESCALATED, (
            EventKind.MISSED_START, EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED
        )),
    ])
    def test_status_and_candidate_events(self, policy, now, expected_status, expected_events):
        result = LifecycleEvaluator.evaluate(make_task(), now, policy)

        assert result.status == expected_status
        assert result.events == expected_events
        assert not result.clock_skew

    def test_pre_start_window_opens_at_lead_boundary(self, policy):
        result = LifecycleEvaluator.evaluate(make_task(), ist(8, 45), policy)
        assert result.status == LifecycleStatus.PRE_START

    def test_thresholds_are_exclusive_of_previous_window(self, policy):
        assert LifecycleEvaluator.evaluate(make_task(), ist(9, 0), policy).status == LifecycleStatus.DUE
        assert LifecycleEvaluator.evaluate(make_task(), ist(9, 15), policy).status == LifecycleStatus.SLA_BREACHED
        assert LifecycleEvaluator.evaluate(make_task(), ist(9, 30), policy).status == LifecycleStatus.ESCALATED

    def test_escalation_marks_first_transition(self, policy):
        task = make_task(status=LifecycleStatus.SLA_BREACHED)
        result = LifecycleEvaluator.evaluate(task, ist(9, 30, 1), policy)

        assert result.escalated_now
        assert result.changed


class TestRoundingBoundary:

    def test_just_before_breach_is_still_due(self, policy):
        task = make_task(sla_minutes=60, status=LifecycleStatus.DUE)
        result = LifecycleEvaluator.evaluate(task, ist(9, 59, 50), policy)

        assert result.status == LifecycleStatus.DUE
        assert result.events == (EventKind.MISSED_START,)


class TestJustificationGate:

    def test_escalated_task_is_held(self, policy):
        task = make_task(status=LifecycleStatus.ESCALATED)
        result = LifecycleEvaluator.evaluate(task, ist(11, 0), policy)

        assert result.status == LifecycleStatus.ESCALATED
        assert not result.changed
        assert result.events == (EventKind.ESCALATED, EventKind.JUSTIFICATION_REQUIRED)

    def test_completion_does_not_release_escalated_task(self, policy):
        task = make_task(status=LifecycleStatus.ESCALATED, completed_at=ist(9, 40))
        result = LifecycleEvaluator.evaluate(task, ist(9, 45), policy)

        assert result.status == LifecycleStatus.ESCALATED
        assert result.events == ()

    def test_acknowledged_task_is_held(self, policy):
        task = make_task(status=LifecycleStatus.ACKNOWLEDGED)
        result = LifecycleEvaluator.evaluate(task, ist(12, 0), policy)

        assert result.status == LifecycleStatus.ACKNOWLEDGED
        assert result.events == ()

    def test_acknowledged_task_completes(self, policy):
        task = make_task(status=LifecycleStatus.ACKNOWLEDGED, completed_at=ist(9, 50))
        result = LifecycleEvaluator.evaluate(task, ist(9, 51), policy)

        assert result.status == LifecycleStatus.COMPLETED
        assert result.events == ()


class TestCompletion:

    def test_completed_while_due(self, policy):
        task = make_task(status=LifecycleStatus.DUE, completed_at=ist(9, 10))

        for now in (ist(9, 11), ist(9, 20), ist(10, 0)):
            result = LifecycleEvaluator.evaluate(task, now, policy)
            assert result.status == LifecycleStatus.COMPLETED
            assert result.events == ()

    def test_completed_before_start(self, policy):
        task = make_task(completed_at=ist(8, 30))
        result = LifecycleEvaluator.evaluate(task, ist(8, 50), policy)

        assert result.status == LifecycleStatus.COMPLETED
        assert result.events == ()


class TestNonRegression:

    def test_stored_status_never_moves_backwards(self, policy):
        task = make_task(status=LifecycleStatus.SLA_BREACHED)
        result = LifecycleEvaluator.evaluate(task, ist(9, 5), policy)

        assert result.status == LifecycleStatus.SLA_BREACHED
        assert result.events == ()

    def test_clock_skew_holds_state(self, policy):
        task = make_task(status=LifecycleStatus.DUE, last_evaluated_at=ist(9, 5))
        result = LifecycleEvaluator.evaluate(task, ist(9, 4), policy)

        assert result.clock_skew
        assert result.status == LifecycleStatus.DUE
        assert result.events == ()

    def test_same_instant_is_not_skew(self, policy):
        task = make_task(status=LifecycleStatus.DUE, last_evaluated_at=ist(9, 5))
        result = LifecycleEvaluator.evaluate(task, ist(9, 5), policy)

        assert not result.clock_skew


class TestLateFirstObservation:

    def test_first_evaluation_after_escalation(self, policy):
        result = LifecycleEvaluator.evaluate(make_task(), ist(9, 31), policy)

        assert result.status == LifecycleStatus.ESCALATED
        assert EventKind.PRE_START not in result.events
        assert EventKind.MISSED_START in result.events

    def test_zero_minute_sla(self, policy):
        task = make_task(sla_minutes=0)
        result = LifecycleEvaluator.evaluate(task, ist(9, 0), policy)

        assert result.status == LifecycleStatus.SLA_BREACHED

    def test_evaluation_in_other_zone_matches_canonical(self, policy):
        now_utc = ist(9, 0, 1).astimezone(timezone.utc)
        result = LifecycleEvaluator.evaluate(make_task(), now_utc, policy)

        assert result.status == LifecycleStatus.DUE

