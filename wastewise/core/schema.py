"""SQLite schema for the task workflow (code-first)."""

import logging

from wastewise.core import db_client


logger = logging.getLogger(__name__)


TABLE_SCHEMAS: dict[str, str] = {
    "tasks": """CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        category TEXT NOT NULL CHECK (category IN (
            'recycling', 'composting', 'waste_reduction', 'plastic_free',
            'energy_saving', 'water_conservation', 'community_cleanup', 'education'
        )),
        assigned_to TEXT NOT NULL,
        assigned_by TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
        difficulty TEXT NOT NULL DEFAULT 'medium' CHECK (difficulty IN ('easy', 'medium', 'hard')),
        due_date TEXT NOT NULL,
        reward_points INTEGER NOT NULL DEFAULT 10 CHECK (reward_points BETWEEN 0 AND 1000),
        tags TEXT NOT NULL DEFAULT '[]',
        recurring TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        proof TEXT,
        verification_notes TEXT,
        rejection_reason TEXT,
        status TEXT NOT NULL DEFAULT 'assigned' CHECK (status IN (
            'assigned', 'in_progress', 'completed', 'verified', 'rejected', 'cancelled'
        )),
        parent_task_id TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        verified_at TEXT
    )""",
    "point_awards": """CREATE TABLE IF NOT EXISTS point_awards (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id TEXT NOT NULL UNIQUE,
        resident_id TEXT NOT NULL,
        points INTEGER NOT NULL CHECK (points >= 0),
        awarded_at TEXT NOT NULL
    )""",
    "task_logs": """CREATE TABLE IF NOT EXISTS task_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        action TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT,
        notes TEXT,
        timestamp TEXT NOT NULL
    )""",
}

INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to_status ON tasks (assigned_to, status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_by ON tasks (assigned_by)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks (due_date)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status_active ON tasks (status, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks (category)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks (created_at)",
    # One successor per verified recurring task
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_parent_task_id ON tasks (parent_task_id) "
    "WHERE parent_task_id IS NOT NULL",
    "CREATE INDEX IF NOT EXISTS idx_point_awards_resident_id ON point_awards (resident_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_logs_task_id ON task_logs (task_id)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist."""
    conn = await db_client.get_connection(db_path=db_path)

    for table_name, ddl in TABLE_SCHEMAS.items():
        await conn.execute(ddl)
        logger.debug("Ensured table", extra={"table": table_name})

    for index_ddl in INDEXES:
        await conn.execute(index_ddl)

    await conn.commit()
    logger.info("Database schema initialized", extra={"tables": list(TABLE_SCHEMAS)})
