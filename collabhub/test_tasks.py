"""
collabhub/test_tasks.py

Task Store: status labels, assignee resolution, validation, orderings and
per-assignee calendar event ids.

Run:
    pytest collabhub/test_tasks.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from collabhub.errors import ValidationFailed
from collabhub.models import TaskStatus
from collabhub.tasks import (
    DESCRIPTION_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    TaskStore,
    map_status_label,
    normalize_deadline,
)


@pytest.fixture
def store(conn):
    return TaskStore(conn)


@pytest.fixture
def new_task(store, project, owner):
    def _new(title="Write report", assignees=None, status="Not Started", deadline=None, description=None):
        return store.create(
            project_id=project.id,
            title=title,
            assignees=assignees or [owner.id],
            status=status,
            created_by=owner.id,
            deadline=deadline,
            description=description,
        )

    return _new


class TestStatusLabels:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Not Started", TaskStatus.not_started),
            ("In Progress", TaskStatus.in_progress),
            ("Done", TaskStatus.completed),
            ("Blocked", TaskStatus.blocked),
            ("Backlog", TaskStatus.backlog),
            ("in_progress", TaskStatus.in_progress),
            (TaskStatus.blocked, TaskStatus.blocked),
            ("Whatever", TaskStatus.not_started),
            (None, TaskStatus.not_started),
        ],
    )
    def test_map_status_label(self, label, expected):
        assert map_status_label(label) == expected

    def test_normalize_deadline_converts_aware_to_naive_utc(self):
        aware = datetime(2025, 12, 1, 9, 0, tzinfo=timezone(timedelta(hours=2)))
        assert normalize_deadline(aware) == datetime(2025, 12, 1, 7, 0)
        assert normalize_deadline(datetime(2025, 12, 1)) == datetime(2025, 12, 1)
        assert normalize_deadline(None) is None


class TestAssigneeResolution:
    def test_numeric_id_of_existing_user(self, store, owner):
        assert store.resolve_assignee(owner.id) == owner.id
        assert store.resolve_assignee(str(owner.id)) == owner.id

    def test_name_lookup_is_case_insensitive(self, store, make_user):
        carol = make_user(name="Carol Danvers")
        assert store.resolve_assignee("  carol danvers ") == carol.id

    def test_unknown_name(self, store):
        with pytest.raises(ValidationFailed) as exc:
            store.resolve_assignee("Nobody Here")
        assert exc.value.message == 'User "Nobody Here" not found'

    def test_ambiguous_name(self, store, make_user):
        make_user(name="Sam")
        make_user(name="sam")
        with pytest.raises(ValidationFailed) as exc:
            store.resolve_assignee("Sam")
        assert exc.value.message == 'User name "Sam" is ambiguous'

    def test_numeric_name_when_no_such_id(self, store, make_user):
        user = make_user(name="424242")
        assert store.resolve_assignee("424242") == user.id

    def test_resolve_assignees_dedupes_keeping_order(self, store, owner, make_user):
        dana = make_user(name="Dana")
        assert store.resolve_assignees(["Dana", owner.id, dana.id]) == [dana.id, owner.id]


class TestCreate:
    def test_create_maps_status_and_keeps_assignee_order(self, new_task, owner, make_user):
        other = make_user()
        task = new_task(assignees=[other.id, owner.id, other.id], status="In Progress")

        assert task.status == TaskStatus.in_progress
        assert task.assignees == [other.id, owner.id]
        assert task.title == "Write report"
        assert task.calendar_events == {}
        assert task.calendar_event_id is None

    def test_unknown_label_defaults_to_not_started(self, new_task):
        assert new_task(status="Someday").status == TaskStatus.not_started

    def test_title_required(self, new_task):
        with pytest.raises(ValidationFailed) as exc:
            new_task(title="   ")
        assert exc.value.message == "Task title is required"

    def test_title_and_description_limits(self, new_task):
        with pytest.raises(ValidationFailed):
            new_task(title="x" * (TITLE_MAX_LENGTH + 1))
        with pytest.raises(ValidationFailed):
            new_task(description="x" * (DESCRIPTION_MAX_LENGTH + 1))
        assert new_task(title="x" * TITLE_MAX_LENGTH).title == "x" * TITLE_MAX_LENGTH

    def test_assignee_required(self, store, project, owner):
        with pytest.raises(ValidationFailed) as exc:
            store.create(project.id, "T", [], "Not Started", owner.id)
        assert exc.value.message == "At least one assignee is required"

    def test_aware_deadline_stored_as_utc(self, new_task):
        task = new_task(deadline=datetime(2025, 12, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5))))
        assert task.deadline == datetime(2025, 12, 2, 4, 30)


class TestQueries:
    def test_project_listing_newest_first(self, store, new_task, project):
        first = new_task(title="first")
        second = new_task(title="second")
        assert [t.id for t in store.find_by_project_id(project.id)] == [second.id, first.id]

    def test_find_by_status(self, store, new_task, project):
        done = new_task(status="Done")
        new_task(status="Blocked")

        assert [t.id for t in store.find_by_status("completed")] == [done.id]
        assert [t.id for t in store.find_by_status(TaskStatus.completed, project_id=project.id)] == [done.id]
        assert store.find_by_status(TaskStatus.completed, project_id=project.id + 1) == []

    def test_find_by_assignee_orders_by_deadline_nulls_last(self, store, new_task, owner):
        now = datetime.utcnow()
        undated = new_task(title="undated")
        late = new_task(title="late", deadline=now + timedelta(days=3))
        soon = new_task(title="soon", deadline=now + timedelta(days=1))

        assert [t.id for t in store.find_by_assignee(owner.id)] == [soon.id, late.id, undated.id]

    def test_upcoming_deadlines_window(self, store, new_task):
        now = datetime.utcnow()
        inside = new_task(title="inside", deadline=now + timedelta(days=2))
        new_task(title="past", deadline=now - timedelta(hours=1))
        new_task(title="far", deadline=now + timedelta(days=10))
        new_task(title="finished", deadline=now + timedelta(days=1), status="Done")
        new_task(title="no deadline")

        assert [t.id for t in store.find_upcoming_deadlines()] == [inside.id]
        assert len(store.find_upcoming_deadlines(days=30)) == 2

    def test_get_all_tasks(self, store, new_task):
        new_task()
        new_task()
        assert len(store.get_all_tasks()) == 2

    def test_missing_task(self, store):
        assert store.find_by_id(9999) is None
        assert store.update(9999, title="x") is None


class TestUpdate:
    def test_update_fields(self, store, new_task, make_user):
        task = new_task()
        other = make_user()
        deadline = datetime(2030, 5, 1, 12, 0)

        updated = store.update(task.id, title=" New ", status="Done", deadline=deadline, assignees=[other.id])

        assert updated.title == "New"
        assert updated.status == TaskStatus.completed
        assert updated.deadline == deadline
        assert updated.assignees == [other.id]

    def test_project_id_is_immutable(self, store, new_task, project):
        task = new_task()
        with pytest.raises(ValidationFailed) as exc:
            store.update(task.id, project_id=project.id + 1)
        assert exc.value.message == "Task project cannot be changed"
        assert store.find_by_id(task.id).project_id == project.id

    def test_unknown_field(self, store, new_task):
        with pytest.raises(ValidationFailed) as exc:
            store.update(new_task().id, priority="high")
        assert exc.value.message == "Unknown task fields: priority"

    def test_empty_assignees_rejected(self, store, new_task, owner):
        task = new_task()
        with pytest.raises(ValidationFailed):
            store.update(task.id, assignees=[])
        assert store.find_by_id(task.id).assignees == [owner.id]

    def test_clear_deadline(self, store, new_task):
        task = new_task(deadline=datetime(2030, 1, 1))
        assert store.update(task.id, deadline=None).deadline is None

    def test_add_and_remove_assignee(self, store, new_task, owner, make_user):
        task = new_task()
        other = make_user()

        assert store.add_assignee(task.id, other.id).assignees == [owner.id, other.id]
        assert store.add_assignee(task.id, other.id).assignees == [owner.id, other.id]
        assert store.remove_assignee(task.id, owner.id).assignees == [other.id]

    def test_delete(self, store, new_task):
        task = new_task()
        store.delete(task.id)
        assert store.find_by_id(task.id) is None


class TestCalendarEventIds:
    def test_one_event_per_assignee(self, store, new_task, owner, make_user):
        other = make_user()
        task = new_task(assignees=[owner.id, other.id])

        store.set_calendar_event(task.id, owner.id, "evt-owner")
        store.set_calendar_event(task.id, other.id, "evt-other")
        store.set_calendar_event(task.id, owner.id, "evt-owner-2")

        loaded = store.find_by_id(task.id)
        assert loaded.calendar_events == {owner.id: "evt-owner-2", other.id: "evt-other"}
        assert loaded.calendar_event_id == "evt-owner-2"

    def test_clear_one_or_all(self, store, new_task, owner, make_user):
        other = make_user()
        task = new_task(assignees=[owner.id, other.id])
        store.set_calendar_event(task.id, owner.id, "a")
        store.set_calendar_event(task.id, other.id, "b")

        store.clear_calendar_events(task.id, owner.id)
        assert store.get_calendar_events(task.id) == {other.id: "b"}

        store.clear_calendar_events(task.id)
        assert store.get_calendar_events(task.id) == {}

    def test_events_removed_with_task(self, store, new_task, owner, conn):
        task = new_task()
        store.set_calendar_event(task.id, owner.id, "a")
        store.delete(task.id)

        count = conn.execute("SELECT COUNT(*) FROM task_calendar_events WHERE task_id = ?", (task.id,)).fetchone()[0]
        assert count == 0
