"""
Tests for the notification acknowledgment workflow.

Tests cover:
- pending -> acknowledged -> resolved and pending -> resolved
- acknowledged_at set exactly once
- Nothing leaves resolved
- mark_read counts only the caller's pending notifications in the tenant
"""

import pytest

from panels.models import NotificationImpact, ViewNotification
from panels.services.errors import InvalidTransitionError, NotFoundError, ValidationError
from panels.services.notification_acknowledgment import NotificationAcknowledgmentService
from panels.services.view_notifier import ViewNotifier
from panels.tests.conftest import TENANT_ID, OTHER_TENANT_ID, OWNER_ID, OTHER_USER_ID


@pytest.fixture
def service(db_session):
    return NotificationAcknowledgmentService(db_session, TENANT_ID)


@pytest.fixture
def make_notification(db_session, panel_factory, view_factory):
    panel = panel_factory()
    view = view_factory(panel, published=True)
    notifier = ViewNotifier(db_session, TENANT_ID)

    def _make(user_id=OWNER_ID) -> ViewNotification:
        notification = notifier.notify_manual(view, NotificationImpact.INFO, "note", user_id=user_id)
        db_session.commit()
        return notification

    return _make


class TestStateMachine:

    def test_acknowledge_sets_timestamp_once(self, make_notification, db_session):
        notification = make_notification()

        assert notification.acknowledge() is True
        first_ack = notification.acknowledged_at
        assert notification.status == "acknowledged"

        assert notification.acknowledge() is False
        assert notification.acknowledged_at == first_ack

    def test_pending_to_resolved(self, make_notification):
        notification = make_notification()

        assert notification.resolve() is True
        assert notification.status == "resolved"
        assert notification.resolved_at is not None
        assert notification.acknowledged_at is None

    def test_acknowledged_to_resolved(self, make_notification):
        notification = make_notification()
        notification.acknowledge()

        assert notification.resolve() is True
        assert notification.is_resolved

    def test_resolved_cannot_be_acknowledged(self, make_notification):
        notification = make_notification()
        notification.resolve()

        with pytest.raises(InvalidTransitionError):
            notification.acknowledge()
        assert notification.status == "resolved"

    def test_invalid_transition_is_a_validation_error(self):
        assert issubclass(InvalidTransitionError, ValidationError)

    def test_resolving_twice_is_noop(self, make_notification):
        notification = make_notification()
        notification.resolve()
        resolved_at = notification.resolved_at

        assert notification.resolve() is False
        assert notification.resolved_at == resolved_at

    def test_is_read(self, make_notification):
        notification = make_notification()
        assert notification.is_read is False
        notification.acknowledge()
        assert notification.is_read is True


class TestMarkRead:

    def test_requires_tenant_id(self, db_session):
        with pytest.raises(ValueError, match="tenant_id is required"):
            NotificationAcknowledgmentService(db_session, "")

    def test_acknowledges_pending_notifications(self, service, make_notification, db_session):
        a = make_notification()
        b = make_notification()

        updated = service.mark_read([a.id, b.id], OWNER_ID)

        assert updated == 2
        db_session.expire_all()
        assert {a.status, b.status} == {"acknowledged"}
        assert a.acknowledged_at is not None

    def test_skips_other_users_notifications(self, service, make_notification, db_session):
        mine = make_notification()
        theirs = make_notification(user_id=OTHER_USER_ID)

        updated = service.mark_read([mine.id, theirs.id], OWNER_ID)

        assert updated == 1
        db_session.expire_all()
        assert theirs.status == "pending"

    def test_skips_unknown_and_already_read(self, service, make_notification):
        read = make_notification()
        service.mark_read([read.id], OWNER_ID)

        assert service.mark_read([read.id, 999999], OWNER_ID) == 0

    def test_skips_resolved(self, service, make_notification):
        notification = make_notification()
        service.resolve(notification.id, OWNER_ID)

        assert service.mark_read([notification.id], OWNER_ID) == 0

    def test_other_tenant_cannot_mark(self, db_session, make_notification):
        notification = make_notification()

        other = NotificationAcknowledgmentService(db_session, OTHER_TENANT_ID)

        assert other.mark_read([notification.id], OWNER_ID) == 0

    def test_empty_ids(self, service):
        assert service.mark_read([], OWNER_ID) == 0


class TestSingleTransitions:

    def test_acknowledge(self, service, make_notification):
        notification = make_notification()

        result = service.acknowledge(notification.id, OWNER_ID)

        assert result.status == "acknowledged"

    def test_acknowledge_resolved_raises(self, service, make_notification):
        notification = make_notification()
        service.resolve(notification.id, OWNER_ID)

        with pytest.raises(InvalidTransitionError):
            service.acknowledge(notification.id, OWNER_ID)

    def test_resolve_other_users_notification_not_found(self, service, make_notification):
        notification = make_notification(user_id=OTHER_USER_ID)

        with pytest.raises(NotFoundError):
            service.resolve(notification.id, OWNER_ID)

    def test_resolve_for_view(self, service, make_notification, db_session):
        a = make_notification()
        b = make_notification(user_id=OTHER_USER_ID)
        service.resolve(a.id, OWNER_ID)

        resolved = service.resolve_for_view(b.view_id)

        assert resolved == 1
        db_session.expire_all()
        assert b.status == "resolved"
