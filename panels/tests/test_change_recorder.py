"""
Tests for ChangeRecorder.

Tests cover:
- Validation of change type / affected column combinations
- Tenant scoping of the Panel lookup
- Change details payload and default descriptions
- Transaction participation (flush, no commit)
- Immutability of recorded changes
"""

import pytest

from panels.models import PanelChange, ChangeType
from panels.services.change_recorder import ChangeRecorder, parse_change_type, validate_change
from panels.services.errors import NotFoundError, ValidationError
from panels.tests.conftest import TENANT_ID, OTHER_TENANT_ID, OWNER_ID


@pytest.fixture
def recorder(db_session):
    return ChangeRecorder(db_session, TENANT_ID, OWNER_ID)


class TestChangeRecorderInit:

    def test_requires_tenant_id(self, db_session):
        with pytest.raises(ValueError, match="tenant_id is required"):
            ChangeRecorder(db_session, "")


class TestValidation:

    def test_parse_change_type_accepts_enum_and_string(self):
        assert parse_change_type(ChangeType.COLUMN_ADDED) == ChangeType.COLUMN_ADDED
        assert parse_change_type("cohort_changed") == ChangeType.COHORT_CHANGED

    def test_parse_change_type_rejects_unknown(self):
        with pytest.raises(ValidationError, match="Invalid change type"):
            parse_change_type("column_renamed")

    @pytest.mark.parametrize("kind", [
        ChangeType.COLUMN_ADDED,
        ChangeType.COLUMN_REMOVED,
        ChangeType.COLUMN_MODIFIED,
    ])
    def test_column_changes_require_affected_column(self, kind):
        with pytest.raises(ValidationError, match="affected_column is required"):
            validate_change(kind, None)

    @pytest.mark.parametrize("kind", [ChangeType.SOURCE_CHANGED, ChangeType.COHORT_CHANGED])
    def test_source_and_cohort_changes_reject_affected_column(self, kind):
        with pytest.raises(ValidationError, match="must be omitted"):
            validate_change(kind, "age")


class TestRecordChange:

    def test_records_column_change(self, recorder, panel_factory, db_session):
        panel = panel_factory(columns=["age"])

        change = recorder.record_change(
            panel.id,
            "column_removed",
            affected_column="age",
            before_state={"id": "age", "name": "Age"},
        )

        assert change.id is not None
        assert change.tenant_id == TENANT_ID
        assert change.panel_id == panel.id
        assert change.change_type == "column_removed"
        assert change.affected_column == "age"
        assert change.changed_by == OWNER_ID
        assert change.before_state == {"id": "age", "name": "Age"}
        assert change.after_state is None
        assert change.description == "Column age removed"

    def test_records_cohort_change_with_custom_description(self, recorder, panel_factory):
        panel = panel_factory()

        change = recorder.record_change(
            panel.id,
            ChangeType.COHORT_CHANGED,
            before_state={"conditions": [], "logic": "AND"},
            after_state={"conditions": [], "logic": "OR"},
            description="Switched to OR",
        )

        assert change.affected_column is None
        assert change.change_details == {
            "description": "Switched to OR",
            "before": {"conditions": [], "logic": "AND"},
            "after": {"conditions": [], "logic": "OR"},
        }

    def test_ids_increase_with_each_change(self, recorder, panel_factory):
        panel = panel_factory()

        first = recorder.record_change(panel.id, ChangeType.SOURCE_CHANGED)
        second = recorder.record_change(panel.id, ChangeType.COHORT_CHANGED)

        assert second.id > first.id

    def test_unknown_panel_raises_not_found(self, recorder):
        with pytest.raises(NotFoundError):
            recorder.record_change("missing-panel", ChangeType.SOURCE_CHANGED)

    def test_panel_of_other_tenant_raises_not_found(self, recorder, panel_factory):
        panel = panel_factory(tenant_id=OTHER_TENANT_ID)

        with pytest.raises(NotFoundError):
            recorder.record_change(panel.id, ChangeType.SOURCE_CHANGED)

    def test_invalid_change_records_nothing(self, recorder, panel_factory, db_session):
        panel = panel_factory()

        with pytest.raises(ValidationError):
            recorder.record_change(panel.id, ChangeType.COLUMN_ADDED)

        assert db_session.query(PanelChange).count() == 0

    def test_does_not_commit(self, recorder, panel_factory, db_session):
        panel = panel_factory()

        recorder.record_change(panel.id, ChangeType.SOURCE_CHANGED)
        db_session.rollback()

        assert db_session.query(PanelChange).filter(
            PanelChange.panel_id == panel.id,
        ).count() == 0


class TestImmutability:

    def test_recorded_change_cannot_be_updated(self, recorder, panel_factory, db_session):
        panel = panel_factory()
        change = recorder.record_change(panel.id, ChangeType.SOURCE_CHANGED)
        db_session.commit()

        change.change_details = {"description": "rewritten", "before": None, "after": None}

        with pytest.raises(ValueError, match="immutable"):
            db_session.flush()
        db_session.rollback()

    def test_recorded_change_cannot_move_to_another_panel(self, recorder, panel_factory, db_session):
        panel = panel_factory()
        other = panel_factory(name="Other")
        change = recorder.record_change(panel.id, ChangeType.SOURCE_CHANGED)
        db_session.commit()

        change.panel_id = other.id

        with pytest.raises(ValueError, match="immutable"):
            db_session.flush()
        db_session.rollback()
