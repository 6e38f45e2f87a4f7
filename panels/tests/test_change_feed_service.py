"""
Tests for ChangeFeedService (listChanges / listNotifications).

Tests cover:
- Visibility: own Panels and Panels with a published View in the tenant
- Filters: panel, change type, since, read state, impact
- Newest-first ordering and offset pagination
- limit clamping, negative offset rejection
"""

import pytest
from datetime import datetime, timedelta, timezone

from panels.models import ChangeType, NotificationImpact
from panels.services.change_feed_service import (
    ChangeFeedService,
    normalize_pagination,
    parse_since,
)
from panels.services.change_recorder import ChangeRecorder
from panels.services.errors import NotFoundError, ValidationError
from panels.services.view_notifier import ViewNotifier
from panels.tests.conftest import TENANT_ID, OTHER_TENANT_ID, OWNER_ID, OTHER_USER_ID


@pytest.fixture
def feed(db_session):
    return ChangeFeedService(db_session, TENANT_ID)


def _record(db_session, panel, change_type=ChangeType.SOURCE_CHANGED, column=None):
    change = ChangeRecorder(db_session, panel.tenant_id, panel.user_id).record_change(
        panel.id, change_type, affected_column=column,
    )
    db_session.commit()
    return change


class TestPagination:

    @pytest.mark.parametrize("requested,expected", [
        (0, 1),
        (-5, 1),
        (1, 1),
        (50, 50),
        (100, 100),
        (500, 100),
    ])
    def test_limit_is_clamped(self, requested, expected):
        assert normalize_pagination(requested, 0) == (expected, 0)

    def test_default_limit_from_config(self):
        assert normalize_pagination(None, None) == (50, 0)

    def test_configured_max_limit(self, change_tracking_config):
        change_tracking_config({"pagination": {"max_limit": 20, "default_limit": 10}})

        assert normalize_pagination(None, 0) == (10, 0)
        assert normalize_pagination(80, 0) == (20, 0)

    def test_negative_offset_rejected(self):
        with pytest.raises(ValidationError, match="offset"):
            normalize_pagination(10, -1)


class TestParseSince:

    def test_parses_iso_string_with_z(self):
        assert parse_since("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_naive_datetime_is_utc(self):
        assert parse_since(datetime(2026, 1, 2)).tzinfo == timezone.utc

    def test_none_and_empty(self):
        assert parse_since(None) is None
        assert parse_since("") is None

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError, match="since"):
            parse_since("yesterday")


class TestListChanges:

    def test_requires_tenant_id(self, db_session):
        with pytest.raises(ValueError, match="tenant_id is required"):
            ChangeFeedService(db_session, "")

    def test_owner_sees_own_panel_changes_newest_first(self, feed, db_session, panel_factory):
        panel = panel_factory()
        first = _record(db_session, panel)
        second = _record(db_session, panel, ChangeType.COHORT_CHANGED)

        page = feed.list_changes(OWNER_ID)

        assert [c.id for c in page.changes] == [second.id, first.id]
        assert page.total == 2
        assert page.has_more is False

    def test_other_user_sees_changes_only_with_published_view(
        self, feed, db_session, panel_factory, view_factory,
    ):
        private = panel_factory(name="Private")
        shared = panel_factory(name="Shared")
        view_factory(shared, published=True)
        view_factory(private, published=False)
        _record(db_session, private)
        shared_change = _record(db_session, shared)

        page = feed.list_changes(OTHER_USER_ID)

        assert [c.id for c in page.changes] == [shared_change.id]

    def test_other_tenant_sees_nothing(self, db_session, panel_factory, view_factory):
        panel = panel_factory()
        view_factory(panel, published=True)
        _record(db_session, panel)

        page = ChangeFeedService(db_session, OTHER_TENANT_ID).list_changes(OWNER_ID)

        assert page.changes == []
        assert page.total == 0

    def test_filter_by_panel(self, feed, db_session, panel_factory):
        a = panel_factory(name="A")
        b = panel_factory(name="B")
        _record(db_session, a)
        change_b = _record(db_session, b)

        page = feed.list_changes(OWNER_ID, panel_id=b.id)

        assert [c.id for c in page.changes] == [change_b.id]

    def test_panel_outside_tenant_not_found(self, feed, panel_factory):
        panel = panel_factory(tenant_id=OTHER_TENANT_ID)

        with pytest.raises(NotFoundError):
            feed.list_changes(OWNER_ID, panel_id=panel.id)

    def test_filter_by_change_type(self, feed, db_session, panel_factory):
        panel = panel_factory(columns=["age"])
        _record(db_session, panel)
        removed = _record(db_session, panel, ChangeType.COLUMN_REMOVED, "age")

        page = feed.list_changes(OWNER_ID, change_type="column_removed")

        assert [c.id for c in page.changes] == [removed.id]

    def test_invalid_change_type(self, feed):
        with pytest.raises(ValidationError):
            feed.list_changes(OWNER_ID, change_type="renamed")

    def test_since_in_future_excludes_everything(self, feed, db_session, panel_factory):
        panel = panel_factory()
        _record(db_session, panel)

        future = datetime.now(timezone.utc) + timedelta(days=1)

        assert feed.list_changes(OWNER_ID, since=future).total == 0

    def test_since_in_past_includes_everything(self, feed, db_session, panel_factory):
        panel = panel_factory()
        _record(db_session, panel)

        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

        assert feed.list_changes(OWNER_ID, since=past).total == 1

    def test_pages(self, feed, db_session, panel_factory):
        panel = panel_factory()
        changes = [_record(db_session, panel) for _ in range(5)]
        newest_first = [c.id for c in reversed(changes)]

        first = feed.list_changes(OWNER_ID, limit=2, offset=0)
        last = feed.list_changes(OWNER_ID, limit=2, offset=4)

        assert [c.id for c in first.changes] == newest_first[:2]
        assert first.has_more is True
        assert [c.id for c in last.changes] == newest_first[4:]
        assert last.has_more is False
        assert last.total == 5

    def test_limit_zero_returns_one(self, feed, db_session, panel_factory):
        panel = panel_factory()
        _record(db_session, panel)
        _record(db_session, panel)

        page = feed.list_changes(OWNER_ID, limit=0)

        assert len(page.changes) == 1
        assert page.has_more is True

    def test_negative_offset(self, feed):
        with pytest.raises(ValidationError):
            feed.list_changes(OWNER_ID, offset=-1)


class TestListNotifications:

    @pytest.fixture
    def notifications(self, db_session, panel_factory, view_factory):
        panel = panel_factory()
        view = view_factory(panel, published=True)
        notifier = ViewNotifier(db_session, TENANT_ID)
        created = [
            notifier.notify_manual(view, NotificationImpact.INFO, "one"),
            notifier.notify_manual(view, NotificationImpact.WARNING, "two"),
            notifier.notify_manual(view, NotificationImpact.BREAKING, "three"),
            notifier.notify_manual(view, NotificationImpact.INFO, "theirs", user_id=OTHER_USER_ID),
        ]
        created[0].acknowledge()
        db_session.commit()
        return created

    def test_lists_own_notifications_newest_first(self, feed, notifications):
        page = feed.list_notifications(OWNER_ID)

        assert [n.message for n in page.notifications] == ["three", "two", "one"]
        assert page.total == 3
        assert page.unread_count == 2
        assert page.has_more is False

    def test_unread_filter(self, feed, notifications):
        page = feed.list_notifications(OWNER_ID, is_read=False)

        assert [n.message for n in page.notifications] == ["three", "two"]

    def test_read_filter_includes_acknowledged(self, feed, notifications):
        page = feed.list_notifications(OWNER_ID, is_read=True)

        assert [n.message for n in page.notifications] == ["one"]
        assert page.unread_count == 2

    def test_impact_filter(self, feed, notifications):
        page = feed.list_notifications(OWNER_ID, impact="breaking")

        assert [n.message for n in page.notifications] == ["three"]
        assert page.unread_count == 2

    def test_invalid_impact(self, feed, notifications):
        with pytest.raises(ValidationError):
            feed.list_notifications(OWNER_ID, impact="catastrophic")

    def test_other_tenant_sees_nothing(self, db_session, notifications):
        page = ChangeFeedService(db_session, OTHER_TENANT_ID).list_notifications(OWNER_ID)

        assert page.total == 0
        assert page.unread_count == 0

    def test_pagination(self, feed, notifications):
        page = feed.list_notifications(OWNER_ID, limit=1, offset=1)

        assert [n.message for n in page.notifications] == ["two"]
        assert page.has_more is True
