"""
Change propagator - Runs classification and notification for a PanelChange.

Runs after the structural mutation has committed, reading post-commit
state. Safe to re-run for the same change: the notifier deduplicates, so a
failed or interrupted pass is retried with propagate_by_id() without
touching the Panel again.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from panels.models.panel_change import PanelChange
from panels.models.view_notification import ViewNotification
from panels.services.errors import NotFoundError
from panels.services.impact_classifier import ImpactClassifier
from panels.services.view_notifier import ViewNotifier


logger = logging.getLogger(__name__)


class ChangePropagator:
    """classify -> notify -> commit for recorded PanelChanges."""

    def __init__(self, db_session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id
        self.classifier = ImpactClassifier(db_session, tenant_id)
        self.notifier = ViewNotifier(db_session, tenant_id)

    def propagate(self, change: PanelChange) -> List[ViewNotification]:
        """
        Notify every published View affected by a change and commit.

        Returns:
            Notifications for the change (new and pre-existing)
        """
        classified = self.classifier.classify(change)
        notifications = self.notifier.notify(change, classified)
        self.db.commit()

        logger.info(
            "Panel change propagated",
            extra={
                "tenant_id": self.tenant_id,
                "change_id": change.id,
                "notifications": len(notifications),
            },
        )

        return notifications

    def propagate_by_id(self, change_id: int) -> List[ViewNotification]:
        """
        Reload a recorded change and propagate it.

        Raises:
            NotFoundError: Change absent or outside the tenant
        """
        change = self.db.query(PanelChange).filter(
            PanelChange.id == change_id,
            PanelChange.tenant_id == self.tenant_id,
        ).first()

        if not change:
            raise NotFoundError(f"Panel change {change_id} not found")

        return self.propagate(change)
