"""
collabhub/test_calendar_sync.py

Calendar Sync Bridge: per-assignee fan-out, create-then-update event ids,
failure isolation, event removal and the sync outbox.

Run:
    pytest collabhub/test_calendar_sync.py -v
"""

import threading
import time
from datetime import datetime

import pytest

from collabhub.calendar_service import GoogleCalendarService, build_event_body
from collabhub.calendar_sync import (
    CalendarSyncBridge,
    build_calendar_description,
    build_event,
    format_status_for_display,
)
from collabhub.db import connect
from collabhub.membership import MembershipManager
from collabhub.migrate import apply_schema
from collabhub.models import TaskStatus
from collabhub.tasks import TaskStore
from collabhub.users import UserStore

DEADLINE = datetime(2025, 12, 1)


@pytest.fixture
def tasks(conn):
    return TaskStore(conn)


@pytest.fixture
def bridge(conn, fake_calendar):
    return CalendarSyncBridge(conn, fake_calendar)


@pytest.fixture
def create_task(tasks, project, owner):
    def _create(assignees, deadline=DEADLINE, **kwargs):
        return tasks.create(
            project_id=project.id,
            title=kwargs.pop("title", "Ship release"),
            assignees=assignees,
            status=kwargs.pop("status", "Not Started"),
            created_by=owner.id,
            deadline=deadline,
            **kwargs,
        )

    return _create


class TestEventContent:
    def test_summary_and_all_day_dates(self, create_task, owner):
        task = create_task([owner.id])
        event = build_event(task)
        body = build_event_body(event)

        assert event.summary == "Ship release [Not Started]"
        assert body["start"] == {"date": "2025-12-01"}
        assert body["end"] == {"date": "2025-12-02"}
        assert body["reminders"]["useDefault"] is False
        assert body["reminders"]["overrides"] == [
            {"method": "email", "minutes": 1440},
            {"method": "popup", "minutes": 60},
        ]

    def test_description_without_task_description(self, create_task, owner):
        task = create_task([owner.id])
        assert build_calendar_description(task, "Not Started") == "Status: Not Started\nTask assigned in project"

    def test_description_with_details_and_team(self, create_task, owner, make_user):
        task = create_task([owner.id, make_user().id], description="Cut the tag")
        assert build_calendar_description(task, "In Progress") == (
            "Status: In Progress\nDescription: Cut the tag\nAssignees: 2 team members"
        )

    def test_status_display(self):
        assert format_status_for_display(TaskStatus.completed) == "Completed"
        assert format_status_for_display("in_progress") == "In Progress"
        assert format_status_for_display("custom") == "custom"


class TestSyncTask:
    def test_disabled_calendar_makes_no_calls(self, bridge, create_task, owner, fake_calendar):
        task = create_task([owner.id])

        assert bridge.sync_task(task) == 0
        assert fake_calendar.calls == []

    def test_no_deadline_makes_no_calls(self, bridge, create_task, make_user, fake_calendar):
        user = make_user(calendar_token="tok-a")
        task = create_task([user.id], deadline=None)

        assert bridge.sync_task(task) == 0
        assert fake_calendar.calls == []

    def test_first_sync_creates_then_updates_same_event(self, bridge, tasks, create_task, make_user, fake_calendar):
        user = make_user(calendar_token="tok-a")
        task = create_task([user.id])

        assert bridge.sync_task(task) == 1
        creates = fake_calendar.calls_to("create_event")
        assert len(creates) == 1
        assert creates[0]["refresh_token"] == "tok-a"
        assert tasks.get_calendar_events(task.id) == {user.id: "evt_1"}

        task = tasks.update(task.id, title="Ship release v2")
        assert bridge.sync_task(task) == 1
        updates = fake_calendar.calls_to("update_event")
        assert len(updates) == 1
        assert updates[0]["event_id"] == "evt_1"
        assert updates[0]["event"].summary == "Ship release v2 [Not Started]"
        assert len(fake_calendar.calls_to("create_event")) == 1

    def test_each_assignee_gets_own_event(self, bridge, tasks, create_task, make_user, owner):
        a = make_user(calendar_token="tok-a")
        b = make_user(calendar_token="tok-b")
        task = create_task([a.id, owner.id, b.id])

        assert bridge.sync_task(task) == 2
        assert tasks.get_calendar_events(task.id) == {a.id: "evt_1", b.id: "evt_2"}

    def test_one_failing_assignee_does_not_stop_others(self, bridge, tasks, create_task, make_user, fake_calendar):
        bad = make_user(calendar_token="tok-bad")
        good = make_user(calendar_token="tok-good")
        fake_calendar.failing.add("tok-bad")
        task = create_task([bad.id, good.id])

        assert bridge.sync_task(task) == 1
        assert tasks.get_calendar_events(task.id) == {good.id: "evt_1"}

    def test_failures_are_collected(self, bridge, create_task, make_user, fake_calendar):
        bad = make_user(calendar_token="tok-bad")
        good = make_user(calendar_token="tok-good")
        fake_calendar.failing.add("tok-bad")
        errors = []

        assert bridge.sync_task(create_task([bad.id, good.id]), errors) == 1
        assert errors == [f"user {bad.id}: Failed to create_event"]

    def test_toggle_disabled_skips_user(self, bridge, create_task, make_user, conn, fake_calendar):
        user = make_user(calendar_token="tok-a")
        UserStore(conn).set_calendar_enabled(user.id, False)

        assert bridge.sync_task(create_task([user.id])) == 0
        assert fake_calendar.calls == []

    def test_unassigned_user_event_is_deleted(self, bridge, tasks, create_task, make_user, fake_calendar):
        a = make_user(calendar_token="tok-a")
        b = make_user(calendar_token="tok-b")
        task = create_task([a.id, b.id])
        bridge.sync_task(task)

        task = tasks.update(task.id, assignees=[b.id])
        bridge.sync_task(task)

        deletes = fake_calendar.calls_to("delete_event")
        assert [(d["refresh_token"], d["event_id"]) for d in deletes] == [("tok-a", "evt_1")]
        assert tasks.get_calendar_events(task.id) == {b.id: "evt_2"}


class TestRemoveTask:
    def test_removes_every_stored_event(self, bridge, tasks, create_task, make_user, fake_calendar):
        a = make_user(calendar_token="tok-a")
        b = make_user(calendar_token="tok-b")
        task = create_task([a.id, b.id])
        bridge.sync_task(task)

        assert bridge.remove_task(tasks.find_by_id(task.id)) == 2
        assert sorted(d["event_id"] for d in fake_calendar.calls_to("delete_event")) == ["evt_1", "evt_2"]
        assert tasks.get_calendar_events(task.id) == {}

    def test_provider_failure_is_swallowed(self, bridge, tasks, create_task, make_user, fake_calendar):
        a = make_user(calendar_token="tok-a")
        task = create_task([a.id])
        bridge.sync_task(task)
        fake_calendar.failing.add("tok-a")

        assert bridge.remove_task(task) == 0
        assert tasks.get_calendar_events(task.id) == {a.id: "evt_1"}

    def test_task_without_events(self, bridge, create_task, owner, fake_calendar):
        assert bridge.remove_task(create_task([owner.id])) == 0
        assert fake_calendar.calls == []


class TestOutbox:
    def _job(self, conn, job_id):
        return conn.execute("SELECT * FROM calendar_sync_jobs WHERE id = ?", (job_id,)).fetchone()

    def test_enqueue_then_drain(self, bridge, tasks, create_task, make_user, conn):
        user = make_user(calendar_token="tok-a")
        task = create_task([user.id])
        job_id = bridge.enqueue(task.id)

        assert [j["id"] for j in bridge.pending_jobs()] == [job_id]
        assert bridge.drain() == 1

        job = self._job(conn, job_id)
        assert job["status"] == "done"
        assert job["attempts"] == 1
        assert bridge.pending_jobs() == []
        assert tasks.get_calendar_events(task.id) == {user.id: "evt_1"}

    def test_job_for_deleted_task_completes(self, bridge, tasks, create_task, owner, conn, fake_calendar):
        task = create_task([owner.id])
        job_id = bridge.enqueue(task.id)
        tasks.delete(task.id)

        assert bridge.drain() == 1
        assert self._job(conn, job_id)["status"] == "done"
        assert fake_calendar.calls == []

    def test_failed_job_is_recorded(self, bridge, create_task, owner, conn, monkeypatch):
        task = create_task([owner.id])
        job_id = bridge.enqueue(task.id)

        def broken(task, errors=None):
            raise RuntimeError("calendar exploded")

        monkeypatch.setattr(bridge, "sync_task", broken)
        assert bridge.drain() == 1

        job = self._job(conn, job_id)
        assert job["status"] == "failed"
        assert job["last_error"] == "calendar exploded"

    def test_drain_empty_outbox(self, bridge):
        assert bridge.drain() == 0

    def test_assignee_failure_marks_job_failed(self, bridge, create_task, make_user, conn, fake_calendar):
        bad = make_user(calendar_token="tok-bad")
        good = make_user(calendar_token="tok-good")
        fake_calendar.failing.add("tok-bad")
        job_id = bridge.enqueue(create_task([bad.id, good.id]).id)

        assert bridge.drain() == 1

        job = self._job(conn, job_id)
        assert job["status"] == "failed"
        assert job["attempts"] == 1
        assert job["last_error"] == f"user {bad.id}: Failed to create_event"

    def test_claim_is_exclusive(self, bridge, create_task, owner):
        task = create_task([owner.id])
        first = bridge.enqueue(task.id)
        second = bridge.enqueue(task.id)

        assert bridge.claim_job(first, task.id) is True
        assert bridge.claim_job(first, task.id) is False
        # Same task already running
        assert bridge.claim_job(second, task.id) is False
        assert [j["id"] for j in bridge.pending_jobs()] == [second]

    def test_other_tasks_are_not_blocked(self, bridge, create_task, owner):
        a = create_task([owner.id])
        b = create_task([owner.id])
        job_a = bridge.enqueue(a.id)
        job_b = bridge.enqueue(b.id)

        assert bridge.claim_job(job_a, a.id) is True
        assert bridge.claim_job(job_b, b.id) is True


class TestConcurrentDrains:
    """Two drains on separate connections to one database file."""

    @pytest.fixture
    def db_file(self, tmp_path):
        path = str(tmp_path / "jobs.db")
        setup = connect(path)
        apply_schema(setup)
        yield path, setup
        setup.close()

    @pytest.fixture
    def slow_calendar(self, fake_calendar, monkeypatch):
        create = fake_calendar.create_event

        def slow_create(refresh_token, event):
            time.sleep(0.3)
            return create(refresh_token, event)

        monkeypatch.setattr(fake_calendar, "create_event", slow_create)
        return fake_calendar

    def _task(self, setup):
        users = UserStore(setup)
        user = users.create("g-drain", "drain@example.com", "Drain")
        users.connect_calendar(user.id, "tok-drain")
        project = MembershipManager(setup).create_project("Drains", "", user.id)
        task = TaskStore(setup).create(
            project_id=project.id,
            title="Ship release",
            assignees=[user.id],
            status="Not Started",
            created_by=user.id,
            deadline=DEADLINE,
        )
        return user, task

    def _drain_together(self, path, provider, workers=2):
        barrier = threading.Barrier(workers)
        results = []

        def run():
            conn = connect(path)
            try:
                barrier.wait()
                results.append(CalendarSyncBridge(conn, provider).drain())
            finally:
                conn.close()

        threads = [threading.Thread(target=run) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_one_job_runs_once(self, db_file, slow_calendar):
        path, setup = db_file
        user, task = self._task(setup)
        CalendarSyncBridge(setup, slow_calendar).enqueue(task.id)

        results = self._drain_together(path, slow_calendar)

        assert sorted(results) == [0, 1]
        assert len(slow_calendar.calls_to("create_event")) == 1
        assert TaskStore(setup).get_calendar_events(task.id) == {user.id: "evt_1"}

    def test_create_then_edit_keeps_one_event(self, db_file, slow_calendar):
        path, setup = db_file
        user, task = self._task(setup)
        bridge = CalendarSyncBridge(setup, slow_calendar)
        bridge.enqueue(task.id)
        bridge.enqueue(task.id)

        results = self._drain_together(path, slow_calendar)

        assert sum(results) == 2
        assert len(slow_calendar.calls_to("create_event")) == 1
        assert [c["event_id"] for c in slow_calendar.calls_to("update_event")] == ["evt_1"]
        assert TaskStore(setup).get_calendar_events(task.id) == {user.id: "evt_1"}
        statuses = [r["status"] for r in setup.execute("SELECT status FROM calendar_sync_jobs")]
        assert statuses == ["done", "done"]


class TestTestTokens:
    def test_real_service_short_circuits_test_tokens(self, conn, tasks, create_task, make_user):
        user = make_user(calendar_token="test_token_abc")
        task = create_task([user.id])
        service = GoogleCalendarService(client_id="id", client_secret="secret", session=object())

        assert CalendarSyncBridge(conn, service).sync_task(task) == 1

        event_id = tasks.get_calendar_events(task.id)[user.id]
        assert event_id.startswith("test_event_")
