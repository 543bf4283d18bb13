"""Tests for junction triggers, conditions and suppression."""

from datetime import timedelta

import pytest

from tiertrack.todos import TriggerContext, default_triggers
from tiertrack.todos.errors import NotFoundError, NotSuppressibleError
from tiertrack.todos.triggers import _EVALUATORS
from tiertrack.todos.types import (
    ChangeType,
    CitationContext,
    CitationPriority,
    CitationType,
    TriggerCondition,
    TriggerConditionType,
    TriggerDefinition,
    utc_now,
)

FEATURE = "auth"


def _cite(manager, todo_id, context, priority=CitationPriority.HIGH, change_log_id="c-17"):
    return manager.citations.create(
        FEATURE,
        todo_id,
        change_log_id,
        CitationType.STATUS_CHANGE,
        [context],
        priority,
    )


def _conflict_entry(manager, todo_id="session-1.1", severity="high"):
    return manager.record_change(
        FEATURE,
        ChangeType.PROPAGATION_CONFLICT,
        todo_id=todo_id,
        reason="two writers changed the plan",
        conflicts=[{"field": "status", "severity": severity}],
    )


class TestDefinitions:
    def test_every_condition_type_has_an_evaluator(self):
        assert set(_EVALUATORS) == set(TriggerConditionType)

    def test_defaults_used_until_configured(self, seeded):
        ids = {t.id for t in seeded.triggers.definitions(FEATURE)}
        assert ids == {t.id for t in default_triggers()}

    def test_conflict_detection_is_not_suppressible(self):
        trigger = next(t for t in default_triggers() if t.id == "trigger-conflict-detection")
        assert trigger.suppressible is False

    def test_configure_replaces_definitions(self, seeded):
        custom = TriggerDefinition(
            id="trigger-any",
            name="any-citation",
            junction=CitationContext.TASK_START,
            conditions=(TriggerCondition(TriggerConditionType.HAS_UNREVIEWED_CITATIONS),),
        )
        seeded.triggers.configure(FEATURE, [custom])

        assert [t.id for t in seeded.triggers.definitions(FEATURE)] == ["trigger-any"]


class TestDetect:
    def test_phase_start_fires_for_high_priority_citation(self, seeded):
        _cite(seeded, "phase-2", CitationContext.PHASE_START)

        fired = seeded.triggers.detect(
            FEATURE, CitationContext.PHASE_START, TriggerContext(todo_id="phase-2")
        )
        assert [t.id for t in fired] == ["trigger-phase-start"]

    def test_low_priority_citation_does_not_fire(self, seeded):
        _cite(seeded, "phase-2", CitationContext.PHASE_START, CitationPriority.LOW)

        assert (
            seeded.triggers.detect(
                FEATURE, CitationContext.PHASE_START, TriggerContext(todo_id="phase-2")
            )
            == []
        )

    def test_dismissed_citations_never_fire(self, seeded):
        citation = _cite(seeded, "phase-2", CitationContext.PHASE_START)
        seeded.citations.dismiss(FEATURE, "phase-2", citation.id)

        context = TriggerContext(todo_id="phase-2")
        assert seeded.triggers.detect(FEATURE, CitationContext.PHASE_START, context) == []

    def test_reviewed_citations_do_not_fire(self, seeded):
        citation = _cite(seeded, "phase-2", CitationContext.PHASE_START)
        seeded.citations.review(FEATURE, "phase-2", citation.id)

        context = TriggerContext(todo_id="phase-2")
        assert seeded.triggers.detect(FEATURE, CitationContext.PHASE_START, context) == []

    def test_session_start_needs_citations_and_conflicts(self, seeded):
        context = TriggerContext(todo_id="session-1.1")
        _cite(seeded, "session-1.1", CitationContext.SESSION_START)
        assert seeded.triggers.detect(FEATURE, CitationContext.SESSION_START, context) == []

        entry = _conflict_entry(seeded)
        seeded.citations.create_from_change(
            FEATURE, "session-1.1", entry.id, [CitationContext.SESSION_START]
        )
        fired = seeded.triggers.detect(FEATURE, CitationContext.SESSION_START, context)
        assert [t.id for t in fired] == ["trigger-session-start"]

    def test_no_todo_means_nothing_fires(self, seeded):
        _cite(seeded, "phase-2", CitationContext.PHASE_START)
        assert seeded.triggers.detect(FEATURE, CitationContext.PHASE_START) == []

    def test_task_start_fires_on_unacknowledged_conflict(self, seeded):
        entry = _conflict_entry(seeded, todo_id="task-1.1.1")
        context = TriggerContext(todo_id="task-1.1.1")

        fired = seeded.triggers.detect(FEATURE, CitationContext.TASK_START, context)
        assert [t.id for t in fired] == ["trigger-task-start"]

        citation = seeded.citations.create_from_change(
            FEATURE, "task-1.1.1", entry.id, [CitationContext.TASK_START]
        )
        seeded.citations.review(FEATURE, "task-1.1.1", citation.id)
        assert seeded.triggers.detect(FEATURE, CitationContext.TASK_START, context) == []

    def test_checkpoint_fires_on_recent_changes_nearby(self, seeded):
        context = TriggerContext(todo_id="session-1.1")
        fired = seeded.triggers.detect(FEATURE, CitationContext.SESSION_CHECKPOINT, context)
        assert [t.id for t in fired] == ["trigger-session-checkpoint"]

        later = TriggerContext(todo_id="session-1.1", now=utc_now() + timedelta(hours=48))
        assert seeded.triggers.detect(FEATURE, CitationContext.SESSION_CHECKPOINT, later) == []

    def test_activate_returns_junction_citations(self, seeded):
        citation = _cite(seeded, "phase-2", CitationContext.PHASE_START)
        _cite(seeded, "phase-2", CitationContext.SESSION_START)
        context = TriggerContext(todo_id="phase-2")
        trigger = seeded.triggers.detect(FEATURE, CitationContext.PHASE_START, context)[0]

        assert [c.id for c in seeded.triggers.activate(FEATURE, trigger, context)] == [
            citation.id
        ]


class TestConditions:
    def _evaluate(self, manager, condition_type, todo_id, **kwargs):
        condition = TriggerCondition(condition_type, **kwargs)
        return manager.triggers.evaluate(FEATURE, condition, TriggerContext(todo_id=todo_id))

    def test_citations_in_context(self, seeded):
        _cite(seeded, "phase-1", CitationContext.PHASE_CHECKPOINT)
        assert self._evaluate(
            seeded,
            TriggerConditionType.HAS_CITATIONS_IN_CONTEXT,
            "phase-1",
            context=CitationContext.PHASE_CHECKPOINT,
        )
        assert not self._evaluate(
            seeded,
            TriggerConditionType.HAS_CITATIONS_IN_CONTEXT,
            "phase-1",
            context=CitationContext.PHASE_END,
        )

    def test_status_change_conditions(self, seeded):
        from tiertrack.todos.types import TodoStatus

        seeded.set_status(FEATURE, "session-1.1", TodoStatus.IN_PROGRESS)

        assert self._evaluate(seeded, TriggerConditionType.TODO_STATUS_CHANGED, "session-1.1")
        assert self._evaluate(seeded, TriggerConditionType.PARENT_STATUS_CHANGED, "task-1.1.1")
        assert self._evaluate(seeded, TriggerConditionType.CHILD_STATUS_CHANGED, "phase-1")
        assert not self._evaluate(seeded, TriggerConditionType.TODO_STATUS_CHANGED, "phase-2")

    def test_planning_doc_changes_apply_feature_wide(self, seeded):
        seeded.record_change(FEATURE, ChangeType.PLANNING_DOC_UPDATED, reason="plan edited")
        assert self._evaluate(seeded, TriggerConditionType.HAS_PLANNING_DOC_CHANGES, "phase-2")

    def test_severity_threshold(self, seeded):
        entry = _conflict_entry(seeded, severity="medium")
        seeded.citations.create_from_change(
            FEATURE, "session-1.1", entry.id, [CitationContext.SESSION_START]
        )
        assert self._evaluate(seeded, TriggerConditionType.HAS_CONFLICTS, "session-1.1")
        assert not self._evaluate(
            seeded, TriggerConditionType.HAS_HIGH_SEVERITY_CONFLICTS, "session-1.1"
        )


class TestSuppression:
    def test_suppressed_trigger_does_not_fire(self, seeded):
        _cite(seeded, "phase-2", CitationContext.PHASE_START)
        seeded.triggers.suppress(FEATURE, "trigger-phase-start", duration_hours=2)
        context = TriggerContext(todo_id="phase-2")

        assert seeded.triggers.is_suppressed(FEATURE, "trigger-phase-start")
        assert seeded.triggers.detect(FEATURE, CitationContext.PHASE_START, context) == []

    def test_suppression_expires(self, seeded):
        _cite(seeded, "phase-2", CitationContext.PHASE_START)
        seeded.triggers.suppress(FEATURE, "trigger-phase-start", duration_hours=1)
        later = TriggerContext(todo_id="phase-2", now=utc_now() + timedelta(hours=2))

        fired = seeded.triggers.detect(FEATURE, CitationContext.PHASE_START, later)
        assert [t.id for t in fired] == ["trigger-phase-start"]

    def test_default_duration_from_config(self, seeded):
        suppression = seeded.triggers.suppress(FEATURE, "trigger-phase-start")
        remaining = suppression.suppressed_until - utc_now()
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    def test_unsuppress(self, seeded):
        seeded.triggers.suppress(FEATURE, "trigger-phase-start")

        assert seeded.triggers.unsuppress(FEATURE, "trigger-phase-start") is True
        assert seeded.triggers.unsuppress(FEATURE, "trigger-phase-start") is False
        assert not seeded.triggers.is_suppressed(FEATURE, "trigger-phase-start")

    def test_non_suppressible_raises(self, seeded):
        with pytest.raises(NotSuppressibleError):
            seeded.triggers.suppress(FEATURE, "trigger-conflict-detection")

    def test_unknown_trigger_raises(self, seeded):
        with pytest.raises(NotFoundError):
            seeded.triggers.suppress(FEATURE, "trigger-missing")
