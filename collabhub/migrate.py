# collabhub/migrate.py
# Database migration module (SQLite)
# Run: python -m collabhub.migrate

import sqlite3

from collabhub.db import get_db_connection

SCHEMA = [
    # Users (Google identity + calendar subset)
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        google_id TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        profile_picture TEXT,
        bio TEXT,
        calendar_enabled INTEGER NOT NULL DEFAULT 0,
        calendar_refresh_token TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_name ON users(name COLLATE NOCASE)",

    # Projects
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        invitation_code TEXT NOT NULL UNIQUE,
        owner_id INTEGER NOT NULL REFERENCES users(id),
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id)",

    # Members (role is a tagged variant: exactly one owner per project)
    """
    CREATE TABLE IF NOT EXISTS project_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role TEXT NOT NULL CHECK (role IN ('owner', 'admin', 'member')),
        joined_at TEXT NOT NULL,
        UNIQUE(project_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_project_members_user ON project_members(user_id)",

    # Resources (stable id; positional order is insertion order)
    """
    CREATE TABLE IF NOT EXISTS project_resources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        resource_name TEXT NOT NULL,
        link TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_project_resources_project ON project_resources(project_id, id)",

    # Per-email invitations
    """
    CREATE TABLE IF NOT EXISTS project_invitations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        invitation_code TEXT NOT NULL UNIQUE,
        invited_email TEXT NOT NULL,
        invited_by INTEGER NOT NULL REFERENCES users(id),
        role TEXT NOT NULL DEFAULT 'user' CHECK (role = 'user'),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'declined', 'expired')),
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_invitations_email ON project_invitations(invited_email)",
    "CREATE INDEX IF NOT EXISTS idx_invitations_project ON project_invitations(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_invitations_status_expiry ON project_invitations(status, expires_at)",

    # Tasks
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'not_started'
            CHECK (status IN ('not_started', 'in_progress', 'completed', 'blocked', 'backlog')),
        created_by INTEGER NOT NULL REFERENCES users(id),
        deadline TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_created ON tasks(project_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_deadline ON tasks(deadline)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)",
    """
    CREATE TABLE IF NOT EXISTS task_assignees (
        task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (task_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_assignees_user ON task_assignees(user_id)",

    # External calendar event id per (task, assignee)
    """
    CREATE TABLE IF NOT EXISTS task_calendar_events (
        task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        event_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (task_id, user_id)
    )
    """,

    # Calendar sync outbox (task_id is not a foreign key: jobs outlive deletes)
    """
    CREATE TABLE IF NOT EXISTS calendar_sync_jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL,
        action TEXT NOT NULL DEFAULT 'sync',
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'running', 'done', 'failed')),
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_calendar_jobs_status ON calendar_sync_jobs(status, id)",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if missing. Safe to run multiple times."""
    cur = conn.cursor()
    for statement in SCHEMA:
        cur.execute(statement)
    conn.commit()


def run_migrations() -> None:
    """Run all database migrations against the configured database."""
    print("[MIGRATE] Starting database migrations...")

    with get_db_connection() as conn:
        apply_schema(conn)

    print(f"[MIGRATE] Ensured {len(SCHEMA)} schema objects")
    print("[MIGRATE] All migrations complete!")


if __name__ == "__main__":
    run_migrations()
