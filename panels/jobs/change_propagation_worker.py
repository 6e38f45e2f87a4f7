"""
Change Propagation Worker.

Background worker that classifies and notifies recorded PanelChanges:
- Used when propagation.inline is disabled (deferred mode)
- Retries changes whose inline propagation failed

Replays changes in id order. Replaying an already propagated change is
safe: the notifier returns the existing notifications.

Run as a cron job or background worker:
    python -m panels.jobs.change_propagation_worker

Configuration:
- CHANGE_PROPAGATION_AFTER_ID: Only replay changes with a greater id.
  When unset, replays changes created within worker.lookback_minutes.
- worker.batch_size / worker.lookback_minutes in config/change_tracking.yml

SECURITY:
- Each change is propagated within its own tenant
"""

import os
import sys
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from panels.config.change_tracking import get_change_tracking_config
from panels.database.session import get_db_session_sync
from panels.models.panel_change import PanelChange
from panels.services.change_propagator import ChangePropagator


logger = logging.getLogger(__name__)


class ChangePropagationWorker:
    """
    Replays PanelChanges through classification and notification.

    Processes changes across all tenants.
    """

    def __init__(
        self,
        db_session: Session,
        after_id: Optional[int] = None,
        batch_size: Optional[int] = None,
        lookback_minutes: Optional[int] = None,
    ):
        """
        Initialize change propagation worker.

        Args:
            db_session: Database session
            after_id: Replay changes with id > after_id. Overrides the lookback window.
            batch_size: Changes loaded per query (default from config)
            lookback_minutes: Window used when after_id is None (default from config)
        """
        config = get_change_tracking_config()
        self.db = db_session
        self.after_id = after_id
        self.batch_size = max(1, batch_size or config.worker_batch_size)
        self.lookback_minutes = lookback_minutes or config.worker_lookback_minutes
        self.run_id = str(uuid.uuid4())
        self.last_id: Optional[int] = after_id
        self.stats = {
            "processed": 0,
            "notifications": 0,
            "errors": 0,
        }

    def _get_changes(self, cutoff: Optional[datetime]) -> List[PanelChange]:
        """Next batch of changes after last_id, oldest first."""
        query = self.db.query(PanelChange)
        if self.last_id is not None:
            query = query.filter(PanelChange.id > self.last_id)
        if cutoff is not None:
            query = query.filter(PanelChange.created_at >= cutoff)
        return (
            query
            .order_by(PanelChange.id.asc())
            .limit(self.batch_size)
            .all()
        )

    def process_change(self, change: PanelChange) -> bool:
        """
        Propagate one change within its tenant.

        Returns:
            True if successful, False otherwise
        """
        change_id = change.id
        self.stats["processed"] += 1
        try:
            notifications = ChangePropagator(self.db, change.tenant_id).propagate(change)
        except SQLAlchemyError as e:
            self.db.rollback()
            self.stats["errors"] += 1
            logger.error(
                "Failed to propagate panel change",
                extra={
                    "run_id": self.run_id,
                    "change_id": change_id,
                    "error": str(e),
                },
                exc_info=True,
            )
            return False

        self.stats["notifications"] += len(notifications)
        return True

    def run(self) -> Dict:
        """
        Run the change propagation worker.

        Returns:
            Run statistics
        """
        start_time = datetime.now(timezone.utc)
        cutoff = None
        if self.after_id is None:
            cutoff = start_time - timedelta(minutes=self.lookback_minutes)

        logger.info(
            "Starting change propagation worker",
            extra={
                "run_id": self.run_id,
                "after_id": self.after_id,
                "lookback_minutes": None if cutoff is None else self.lookback_minutes,
            },
        )

        while True:
            batch = self._get_changes(cutoff)
            if not batch:
                break

            # Ids are read up front: a rollback expires the loaded changes
            ids = [change.id for change in batch]
            for change in batch:
                self.process_change(change)
            self.last_id = ids[-1]

            if len(batch) < self.batch_size:
                break

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        self.stats["duration_seconds"] = duration
        self.stats["run_id"] = self.run_id
        self.stats["last_id"] = self.last_id

        logger.info(
            "Change propagation worker completed",
            extra={
                "run_id": self.run_id,
                **self.stats,
            },
        )

        return self.stats


def main():
    """Main entry point for change propagation worker."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Change Propagation Worker starting")

    after_id = os.getenv("CHANGE_PROPAGATION_AFTER_ID")

    try:
        for session in get_db_session_sync():
            worker = ChangePropagationWorker(
                session,
                after_id=int(after_id) if after_id else None,
            )
            stats = worker.run()
            logger.info("Change Propagation Worker stats", extra=stats)
    except Exception as e:
        logger.error("Change Propagation Worker failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    logger.info("Change Propagation Worker finished")


if __name__ == "__main__":
    main()
