"""
Panel structure service - Structural mutations of a Panel.

Every mutation runs in one transaction that:
1. Locks the Panel row (SELECT ... FOR UPDATE)
2. Validates and applies the mutation
3. Records the PanelChange through ChangeRecorder
4. Commits

so a committed mutation always has its change record. Classification and
notification run after the commit (inline when propagation.inline is
enabled, otherwise by the change propagation worker). A propagation
failure leaves the change recorded and is reported, not raised.

SECURITY: only the Panel owner, within the tenant, may change its structure.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from panels.config.change_tracking import get_change_tracking_config
from panels.models.column import BaseColumn, CalculatedColumn, ColumnType
from panels.models.data_source import DataSource, DataSourceType
from panels.models.panel import Panel, cohort_rule_problems
from panels.models.panel_change import PanelChange, ChangeType
from panels.models.view_notification import ViewNotification
from panels.services.change_propagator import ChangePropagator
from panels.services.change_recorder import ChangeRecorder
from panels.services.errors import NotFoundError, PanelsError, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class StructuralChangeResult:
    """
    Outcome of a structural mutation.

    change is None when the mutation turned out to be a no-op. propagated
    is False when notifications were deferred or propagation failed; the
    change can then be re-propagated by id.
    """

    change: Optional[PanelChange]
    notifications: List[ViewNotification] = field(default_factory=list)
    propagated: bool = False


def _parse_column_type(value: Any) -> str:
    try:
        return ColumnType(value).value
    except ValueError:
        allowed = ", ".join(item.value for item in ColumnType)
        raise ValidationError(f"Invalid column type '{value}'. Must be one of: {allowed}")


def _parse_source_type(value: Any) -> str:
    try:
        return DataSourceType(value).value
    except ValueError:
        allowed = ", ".join(item.value for item in DataSourceType)
        raise ValidationError(f"Invalid data source type '{value}'. Must be one of: {allowed}")


def _require_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Column name is required")
    return name.strip()


def _changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> List[str]:
    return sorted(key for key in after if before.get(key) != after.get(key))


class PanelStructureService:
    """Column, data source and cohort rule mutations with change recording."""

    def __init__(self, db: Session, tenant_id: str, user_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not user_id:
            raise ValueError("user_id is required")
        self.db = db
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.recorder = ChangeRecorder(db, tenant_id, user_id)

    # =========================================================================
    # Columns
    # =========================================================================

    def add_base_column(
        self,
        panel_id: str,
        name: str,
        data_source_id: str,
        source_field: str,
        column_type: str = ColumnType.TEXT.value,
        properties: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> StructuralChangeResult:
        """
        Add a column reading source_field from one of the Panel's data sources.

        Raises:
            NotFoundError: Panel not found or not owned by the caller
            ValidationError: Bad name/type, or data source not attached to the Panel
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            name = _require_name(name)
            column_type = _parse_column_type(column_type)
            if not source_field:
                raise ValidationError("source_field is required for base columns")
            self._attached_source(panel, data_source_id, error=ValidationError)

            column = BaseColumn(
                panel_id=panel.id,
                name=name,
                type=column_type,
                data_source_id=data_source_id,
                source_field=source_field,
                properties=properties or {},
                column_metadata=metadata,
            )
            panel.base_columns.append(column)
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.COLUMN_ADDED,
                affected_column=column.id,
                after_state=column.snapshot(),
                description=f'Column "{name}" added',
            )
            return self._commit_and_propagate(change)

    def add_calculated_column(
        self,
        panel_id: str,
        name: str,
        formula: str,
        dependencies: Iterable[str] = (),
        column_type: str = ColumnType.NUMBER.value,
        properties: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> StructuralChangeResult:
        """
        Add a column computed from other columns of the Panel.

        Raises:
            NotFoundError: Panel not found or not owned by the caller
            ValidationError: Empty formula, or a dependency is not a column of the Panel
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            name = _require_name(name)
            column_type = _parse_column_type(column_type)
            if not formula or not formula.strip():
                raise ValidationError("formula is required for calculated columns")
            dependencies = self._validate_dependencies(panel, dependencies)

            column = CalculatedColumn(
                panel_id=panel.id,
                name=name,
                type=column_type,
                formula=formula,
                dependencies=dependencies,
                properties=properties or {},
                column_metadata=metadata,
            )
            panel.calculated_columns.append(column)
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.COLUMN_ADDED,
                affected_column=column.id,
                after_state=column.snapshot(),
                description=f'Calculated column "{name}" added',
            )
            return self._commit_and_propagate(change)

    def update_column(
        self,
        panel_id: str,
        column_id: str,
        name: Optional[str] = None,
        column_type: Optional[str] = None,
        properties: Optional[dict] = None,
        metadata: Optional[dict] = None,
        source_field: Optional[str] = None,
        formula: Optional[str] = None,
        dependencies: Optional[Iterable[str]] = None,
    ) -> StructuralChangeResult:
        """
        Modify a column. Records column_modified with the changed fields only.

        A call that changes nothing records nothing and returns a result
        with change=None.

        Raises:
            NotFoundError: Panel or column not found
            ValidationError: Field not applicable to the column kind, bad values
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            column = panel.find_column(column_id)
            if column is None:
                raise NotFoundError(f"Column {column_id} not found in panel {panel_id}")

            if column.is_calculated and source_field is not None:
                raise ValidationError("source_field applies to base columns only")
            if not column.is_calculated and (formula is not None or dependencies is not None):
                raise ValidationError("formula and dependencies apply to calculated columns only")

            # Parse every field before touching the column
            updates: Dict[str, Any] = {}
            if name is not None:
                updates["name"] = _require_name(name)
            if column_type is not None:
                updates["type"] = _parse_column_type(column_type)
            if properties is not None:
                updates["properties"] = dict(properties)
            if metadata is not None:
                updates["column_metadata"] = dict(metadata)
            if source_field is not None:
                if not source_field:
                    raise ValidationError("source_field cannot be empty")
                updates["source_field"] = source_field
            if formula is not None:
                if not formula.strip():
                    raise ValidationError("formula cannot be empty")
                updates["formula"] = formula
            if dependencies is not None:
                deps = self._validate_dependencies(panel, dependencies)
                if column.id in deps:
                    raise ValidationError("A calculated column cannot depend on itself")
                updates["dependencies"] = deps

            before = column.snapshot()
            for attr, value in updates.items():
                setattr(column, attr, value)

            after = column.snapshot()
            changed = _changed_fields(before, after)
            if not changed:
                return self._unchanged()

            self.db.flush()
            change = self.recorder.record_change(
                panel.id,
                ChangeType.COLUMN_MODIFIED,
                affected_column=column.id,
                before_state={"name": before["name"], **{k: before[k] for k in changed}},
                after_state={"name": after["name"], **{k: after[k] for k in changed}},
                description=f'Column "{after["name"]}" modified ({", ".join(changed)})',
            )
            return self._commit_and_propagate(change)

    def remove_column(self, panel_id: str, column_id: str) -> StructuralChangeResult:
        """
        Remove a column.

        Raises:
            NotFoundError: Panel or column not found
            ValidationError: A calculated column still depends on it
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            column = panel.find_column(column_id)
            if column is None:
                raise NotFoundError(f"Column {column_id} not found in panel {panel_id}")

            dependents = [
                c.name for c in panel.calculated_columns
                if c.id != column.id and column.id in (c.dependencies or [])
            ]
            if dependents:
                raise ValidationError(
                    f'Column "{column.name}" is used by calculated columns: {", ".join(sorted(dependents))}'
                )

            before = column.snapshot()
            if column.is_calculated:
                panel.calculated_columns.remove(column)
            else:
                panel.base_columns.remove(column)
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.COLUMN_REMOVED,
                affected_column=before["id"],
                before_state=before,
                description=f'Column "{before["name"]}" removed',
            )
            return self._commit_and_propagate(change)

    # =========================================================================
    # Data sources
    # =========================================================================

    def add_data_source(
        self,
        panel_id: str,
        source_type: str,
        config: Optional[dict] = None,
    ) -> StructuralChangeResult:
        """Attach a new data source to the Panel (source_changed)."""
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            source = DataSource(
                panel_id=panel.id,
                type=_parse_source_type(source_type),
                config=config or {},
            )
            self.db.add(source)
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.SOURCE_CHANGED,
                after_state={"action": "added", "data_source": source.snapshot()},
                description=f"Data source {source.type} added",
            )
            return self._commit_and_propagate(change)

    def update_data_source(
        self,
        panel_id: str,
        data_source_id: str,
        source_type: Optional[str] = None,
        config: Optional[dict] = None,
    ) -> StructuralChangeResult:
        """
        Change a data source's type or configuration (source_changed).

        No-op (change=None) when nothing differs.
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            source = self._attached_source(panel, data_source_id)

            before = source.snapshot()
            if source_type is not None:
                source.type = _parse_source_type(source_type)
            if config is not None:
                source.config = dict(config)
            after = source.snapshot()

            if before == after:
                return self._unchanged()

            self.db.flush()
            change = self.recorder.record_change(
                panel.id,
                ChangeType.SOURCE_CHANGED,
                before_state={"action": "updated", "data_source": before},
                after_state={"action": "updated", "data_source": after},
                description=f"Data source {source.type} updated",
            )
            return self._commit_and_propagate(change)

    def remove_data_source(self, panel_id: str, data_source_id: str) -> StructuralChangeResult:
        """
        Detach a data source from the Panel (source_changed).

        The row is kept with panel_id = NULL as a historical record.

        Raises:
            ValidationError: Base columns still read from this source
        """
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            source = self._attached_source(panel, data_source_id)

            in_use = self.db.query(BaseColumn).filter(
                BaseColumn.data_source_id == source.id,
            ).count()
            if in_use:
                raise ValidationError(
                    f"Data source {source.id} is still used by {in_use} column(s)"
                )

            before = source.snapshot()
            source.panel_id = None
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.SOURCE_CHANGED,
                before_state={"action": "removed", "data_source": before},
                description=f"Data source {before['type']} removed",
            )
            return self._commit_and_propagate(change)

    def sync_data_source(
        self,
        panel_id: str,
        data_source_id: str,
        synced_at: Optional[datetime] = None,
    ) -> DataSource:
        """Record a completed sync. Not a structural change, nothing is recorded."""
        with self._rollback_on_error():
            panel = self._lock_panel(panel_id)
            source = self._attached_source(panel, data_source_id)
            source.last_sync = synced_at or datetime.now(timezone.utc)
            self.db.commit()

            logger.info(
                "Data source synced",
                extra={
                    "tenant_id": self.tenant_id,
                    "panel_id": panel_id,
                    "data_source_id": data_source_id,
                },
            )
            return source

    # =========================================================================
    # Cohort
    # =========================================================================

    def update_cohort_rule(self, panel_id: str, cohort_rule: dict) -> StructuralChangeResult:
        """
        Replace the Panel's cohort rule (cohort_changed).

        Raises:
            ValidationError: Malformed rule
        """
        with self._rollback_on_error():
            problems = cohort_rule_problems(cohort_rule)
            if problems:
                raise ValidationError("Invalid cohort rule: " + "; ".join(problems))

            panel = self._lock_panel(panel_id)
            before = panel.cohort_rule
            if before == cohort_rule:
                return self._unchanged()

            panel.cohort_rule = dict(cohort_rule)
            self.db.flush()

            change = self.recorder.record_change(
                panel.id,
                ChangeType.COHORT_CHANGED,
                before_state=before,
                after_state=panel.cohort_rule,
            )
            return self._commit_and_propagate(change)

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _rollback_on_error(self) -> Iterator[None]:
        """Discard partial edits and release the Panel lock when a mutation is rejected."""
        try:
            yield
        except (PanelsError, SQLAlchemyError):
            self.db.rollback()
            raise

    def _lock_panel(self, panel_id: str) -> Panel:
        """Load the Panel with a row lock held until commit."""
        panel = (
            self.db.query(Panel)
            .filter(
                Panel.id == panel_id,
                Panel.tenant_id == self.tenant_id,
            )
            .with_for_update()
            .first()
        )
        if not panel:
            raise NotFoundError(f"Panel {panel_id} not found")
        if panel.user_id != self.user_id:
            raise NotFoundError("You do not have edit access to this panel")
        return panel

    def _attached_source(self, panel: Panel, data_source_id: str, error=NotFoundError) -> DataSource:
        source = self.db.query(DataSource).filter(
            DataSource.id == data_source_id,
            DataSource.panel_id == panel.id,
        ).first()
        if not source:
            raise error(f"Data source {data_source_id} is not attached to panel {panel.id}")
        return source

    def _validate_dependencies(self, panel: Panel, dependencies: Iterable[str]) -> List[str]:
        deps = list(dict.fromkeys(dependencies or []))
        missing = [d for d in deps if d not in panel.column_ids]
        if missing:
            raise ValidationError(
                f"Unknown column dependencies: {', '.join(missing)}"
            )
        return deps

    def _unchanged(self) -> StructuralChangeResult:
        # Release the Panel lock without writing anything
        self.db.rollback()
        return StructuralChangeResult(change=None, propagated=True)

    def _commit_and_propagate(self, change: PanelChange) -> StructuralChangeResult:
        change_id = change.id
        self.db.commit()

        if not get_change_tracking_config().propagate_inline:
            logger.info(
                "Propagation deferred to worker",
                extra={"tenant_id": self.tenant_id, "change_id": change_id},
            )
            return StructuralChangeResult(change=change, propagated=False)

        try:
            notifications = ChangePropagator(self.db, self.tenant_id).propagate(change)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Change propagation failed",
                extra={"tenant_id": self.tenant_id, "change_id": change_id},
            )
            return StructuralChangeResult(change=change, propagated=False)

        return StructuralChangeResult(
            change=change,
            notifications=notifications,
            propagated=True,
        )
