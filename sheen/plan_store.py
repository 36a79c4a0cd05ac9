"""Plan persistence with SQLite storage."""

import json
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from sheen.exceptions import PlanPersistenceError
from sheen.logging import get_logger
from sheen.models import Task

log = get_logger(__name__)


@runtime_checkable
class PlanStore(Protocol):
    """Durable task queue keyed by task id."""

    async def read_all(self) -> list[Task]:
        ...

    async def write_all(self, tasks: list[Task]) -> None:
        ...

    async def exists(self) -> bool:
        ...


class MemoryPlanStore:
    """In-process plan store; keeps serialized copies so reads never alias."""

    def __init__(self, tasks: list[Task] | None = None):
        self._rows: list[dict] | None = None
        if tasks is not None:
            self._rows = [task.to_dict() for task in tasks]
        self.write_count = 0

    async def read_all(self) -> list[Task]:
        return [Task.from_dict(row) for row in self._rows or []]

    async def write_all(self, tasks: list[Task]) -> None:
        self._rows = [task.to_dict() for task in tasks]
        self.write_count += 1

    async def exists(self) -> bool:
        return bool(self._rows)


class SqlitePlanStore:
    """Stores the task queue in SQLite, one row per task."""

    def __init__(self, db_path: Path | str):
        """Initialize plan store.

        Args:
            db_path: Database file path (parent directories are created)
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            try:
                self._db = await aiosqlite.connect(str(self.db_path))
                await self._db.execute("""
                    CREATE TABLE IF NOT EXISTS tasks (
                        id TEXT PRIMARY KEY,
                        ordinal INTEGER NOT NULL,
                        status TEXT NOT NULL,
                        priority TEXT NOT NULL,
                        payload TEXT NOT NULL
                    )
                """)
                await self._db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_tasks_ordinal ON tasks(ordinal)"
                )
                await self._db.commit()
            except (aiosqlite.Error, OSError) as e:
                if self._db is not None:
                    await self._db.close()
                self._db = None
                raise PlanPersistenceError(f"Cannot open plan store {self.db_path}: {e}") from e
        return self._db

    async def read_all(self) -> list[Task]:
        """Read the whole queue in order.

        Returns:
            Tasks sorted by their queue position
        """
        db = await self._ensure_db()
        try:
            async with db.execute("SELECT payload FROM tasks ORDER BY ordinal ASC") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PlanPersistenceError(f"Cannot read plan: {e}") from e

        tasks: list[Task] = []
        for row in rows:
            try:
                tasks.append(Task.from_dict(json.loads(row[0])))
            except (ValueError, KeyError, TypeError) as e:
                log.warning("Skipping unreadable task row", error=str(e))
        return tasks

    async def write_all(self, tasks: list[Task]) -> None:
        """Replace the stored queue with ``tasks`` atomically.

        A failed write leaves the previously stored queue in place.
        """
        try:
            rows = [
                (task.id, index, task.status, task.priority, json.dumps(task.to_dict()))
                for index, task in enumerate(tasks)
            ]
        except (TypeError, ValueError) as e:
            raise PlanPersistenceError(f"Cannot serialize plan: {e}") from e

        db = await self._ensure_db()
        try:
            await db.execute("DELETE FROM tasks")
            await db.executemany(
                """
                INSERT OR REPLACE INTO tasks (id, ordinal, status, priority, payload)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise PlanPersistenceError(f"Cannot write plan: {e}") from e

    async def exists(self) -> bool:
        if not self.db_path.exists():
            return False
        db = await self._ensure_db()
        try:
            async with db.execute("SELECT COUNT(*) FROM tasks") as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PlanPersistenceError(f"Cannot inspect plan: {e}") from e
        return bool(row and row[0] > 0)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
