import json
import os
from typing import Any, Dict, Iterable, List
from uuid import uuid4

import aiosqlite

from ..common.config import DATABASE
from ..common.errors import BatchNotFoundError, TaskNotFoundError, TemplateNotFoundError
from ..lib.utils import get_downgrade_migrations, get_upgrade_migrations, to_iso, utcnow
from ..schemas.analytics import TaskAnalytics
from ..schemas.execution import TaskBatch, TaskCacheEntry, TaskExecution
from ..schemas.task import Task, TaskInput
from ..schemas.template import TaskTemplate, TemplateInput
from .base import DatabaseBackend

TASK_JSON_COLUMNS = frozenset({"dependencies", "retry_config", "last_result", "config"})
TASK_COLUMNS = frozenset(
    {
        "name",
        "description",
        "status",
        "frequency",
        "cron_expression",
        "priority",
        "dependencies",
        "retry_config",
        "template_id",
        "retry_count",
        "last_run",
        "next_run",
        "last_result",
        "config",
    }
)

TEMPLATE_JSON_COLUMNS = frozenset(
    {"default_config", "required_fields", "optional_fields", "tags"}
)
TEMPLATE_FILTERS = frozenset({"type", "category", "is_public", "created_by", "name"})

BATCH_COLUMNS = frozenset(
    {"status", "successful_tasks", "failed_tasks", "end_time"}
)

PRIORITY_ORDER = """
    CASE priority
        WHEN 'critical' THEN 0
        WHEN 'high' THEN 1
        WHEN 'normal' THEN 2
        ELSE 3
    END
"""

# Parameters: now, stale_before
DUE_PREDICATE = """
    status = 'active'
    AND (
        (next_run IS NOT NULL AND next_run <= ?)
        OR (next_run IS NULL AND last_run IS NULL)
        OR (
            LOWER(TRIM(frequency)) IN ('real-time', 'continuous')
            AND last_run IS NOT NULL
            AND last_run <= ?
        )
    )
"""


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


class Database(DatabaseBackend):
    """Async SQLite store for the task orchestration engine.

    Every operation opens its own short-lived connection, so a single
    ``Database`` can be shared freely between coroutines. Counter updates
    are expressed as single SQL statements (or a single transaction) so
    concurrent writers never lose increments.

    Args:
        path: SQLite file to use. Defaults to ``.vigil/vigil.sqlite3``.
        timeout: Seconds to wait on a locked database before failing.
    """

    def __init__(self, path: str | None = None, timeout: float = 30.0) -> None:
        self.path = path or DATABASE
        self.timeout = timeout
        self.upgrade_migrations = get_upgrade_migrations()
        self.downgrade_migrations = get_downgrade_migrations()
        self._ready = False

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.path, timeout=self.timeout)

    async def _init_db(self) -> None:
        """Initialize the database by creating directories and running migrations.

        Migrations are idempotent (``IF NOT EXISTS``), so they are applied
        once per ``Database`` instance whether or not the file already exists.
        """
        if self._ready:
            return

        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        async with self._connect() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            for migration in self.upgrade_migrations:
                await conn.executescript(migration["sql"])
            await conn.commit()

        self._ready = True

    async def drop(self) -> None:
        """Run downgrade migrations, removing every table."""
        async with self._connect() as conn:
            for migration in reversed(self.downgrade_migrations):
                await conn.executescript(migration["sql"])
            await conn.commit()
        self._ready = False

    async def query(self, sql: str, params: tuple = ()) -> Iterable[aiosqlite.Row]:
        """Execute a SELECT query and return all results.

        Args:
            sql: The SQL query string
            params: Query parameters as a tuple

        Returns:
            List of Row objects containing query results
        """
        async with self._connect() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(sql, params)
            results = await cursor.fetchall()
        return results

    async def fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row | None:
        """Execute a SELECT query and return the first result.

        Args:
            sql: The SQL query string
            params: Query parameters as a tuple

        Returns:
            First Row object or None if no results
        """
        async with self._connect() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(sql, params)
            result = await cursor.fetchone()
            await conn.commit()
        return result

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a SQL statement (INSERT, UPDATE, DELETE).

        Args:
            sql: The SQL statement string
            params: Statement parameters as a tuple

        Returns:
            Number of affected rows
        """
        async with self._connect() as conn:
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor.rowcount

    # === Task Methods ===

    async def create_task(self, task: TaskInput) -> Task:
        """Insert a new task.

        Counters start at zero and ``success_rate`` at 100. The caller is
        responsible for validating ``config`` and computing ``next_run``.

        Args:
            task: Task fields; ``user_id``, ``name`` and ``type`` are required

        Returns:
            The stored task
        """
        task_id = self._create_id()
        now = to_iso(utcnow())

        sql = """
            INSERT INTO tasks (
                id, user_id, name, description, status, type, frequency,
                cron_expression, priority, dependencies, retry_config,
                template_id, next_run, config, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.execute(
            sql,
            (
                task_id,
                task["user_id"],
                task["name"],
                task.get("description", ""),
                task.get("status", "active"),
                task["type"],
                task.get("frequency", ""),
                task.get("cron_expression"),
                task.get("priority", "normal"),
                _dumps(task.get("dependencies") or []),
                _dumps(task.get("retry_config")),
                task.get("template_id"),
                task.get("next_run"),  # type: ignore
                _dumps(task.get("config") or {}),
                now,
                now,
            ),
        )
        return await self.get_task(task_id)

    async def find_task(self, task_id: str) -> Task | None:
        row = await self.fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row else None

    async def get_task(self, task_id: str) -> Task:
        """Retrieve a task by id.

        Raises:
            TaskNotFoundError: If the task doesn't exist
        """
        task = await self.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task with ID {task_id} not found.")
        return task

    async def list_tasks(
        self, user_id: str | None = None, status: str | None = None, limit: int = 100
    ) -> List[Task]:
        clauses = []
        params: List[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM tasks {where} ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = await self.query(sql, tuple(params))
        return [self._row_to_task(row) for row in rows]

    async def update_task(self, task_id: str, **fields: Any) -> None:
        """Update selected task columns.

        Counter columns are deliberately not writable here; use
        :meth:`record_task_outcome` so increments stay atomic.

        Raises:
            ValueError: If an unknown column is given
        """
        if not fields:
            return

        unknown = set(fields) - TASK_COLUMNS
        if unknown:
            raise ValueError(f"Unknown task columns: {sorted(unknown)}")

        assignments = []
        params: List[Any] = []
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_dumps(value) if column in TASK_JSON_COLUMNS else value)
        assignments.append("updated_at = ?")
        params.append(to_iso(utcnow()))
        params.append(task_id)

        sql = f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ?"
        await self.execute(sql, tuple(params))

    async def claim_task(self, task_id: str, expected_status: str) -> bool:
        """Mark a task ``running`` if its status is still ``expected_status``.

        Returns:
            False if the status changed since it was read (paused, deleted, ...)
        """
        changed = await self.execute(
            """
            UPDATE tasks SET status = 'running', updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (to_iso(utcnow()), task_id, expected_status),
        )
        return changed > 0

    async def release_task(
        self, task_id: str, status: str, execution_id: str, error: str
    ) -> None:
        """Roll back a claim whose run was interrupted before it was recorded.

        The task returns to ``status`` only while it is still ``running``, and
        the execution is closed as failed only while it has no ``end_time``.
        """
        now = to_iso(utcnow())
        async with self._connect() as conn:
            await conn.execute(
                """
                UPDATE tasks SET status = ?, updated_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (status, now, task_id),
            )
            await conn.execute(
                """
                UPDATE task_executions SET end_time = ?, success = 0, error = ?
                WHERE id = ? AND end_time IS NULL
                """,
                (now, error, execution_id),
            )
            await conn.commit()

    async def record_task_outcome(
        self,
        task_id: str,
        success: bool,
        **fields: Any,
    ) -> Task:
        """Atomically record one execution attempt against a task.

        ``execution_count`` and exactly one of ``success_count`` /
        ``failure_count`` are incremented in the same transaction that
        rewrites ``success_rate`` and any extra ``fields``.

        Args:
            task_id: Task that was executed
            success: Whether the attempt succeeded
            **fields: Extra columns to set (status, next_run, last_result, ...)

        Returns:
            The updated task

        Raises:
            TaskNotFoundError: If the task doesn't exist
        """
        unknown = set(fields) - TASK_COLUMNS
        if unknown:
            raise ValueError(f"Unknown task columns: {sorted(unknown)}")

        assignments = [
            "execution_count = execution_count + 1",
            "success_count = success_count + ?",
            "failure_count = failure_count + ?",
            "updated_at = ?",
        ]
        params: List[Any] = [int(success), int(not success), to_iso(utcnow())]
        for column, value in fields.items():
            if column == "status":
                # Leave a status the user changed mid-run (e.g. paused) alone.
                assignments.append(
                    "status = CASE WHEN status IN ('running', 'retrying') "
                    "THEN ? ELSE status END"
                )
            else:
                assignments.append(f"{column} = ?")
            params.append(_dumps(value) if column in TASK_JSON_COLUMNS else value)
        params.append(task_id)

        sql = f"""
            UPDATE tasks SET {', '.join(assignments)}
            WHERE id = ?
            RETURNING execution_count, success_count
        """

        async with self._connect() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(sql, tuple(params))
            row = await cursor.fetchone()
            if row is None:
                await conn.rollback()
                raise TaskNotFoundError(f"Task with ID {task_id} not found.")

            success_rate = round(row["success_count"] / row["execution_count"] * 100)
            await conn.execute(
                "UPDATE tasks SET success_rate = ? WHERE id = ?",
                (success_rate, task_id),
            )
            await conn.commit()

        return await self.get_task(task_id)

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task together with its executions and cache entries."""
        async with self._connect() as conn:
            cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
            await conn.execute(
                "DELETE FROM task_executions WHERE task_id = ?", (task_id,)
            )
            await conn.execute("DELETE FROM task_cache WHERE task_id = ?", (task_id,))
            await conn.commit()
        return deleted

    async def get_due_tasks(self, now: str, stale_before: str) -> List[Task]:
        """Retrieve active tasks that are due at ``now``.

        A task is due when its ``next_run`` has arrived, when it has never
        run and has no ``next_run``, or when it is a real-time/continuous
        task whose ``last_run`` is at or before ``stale_before``.

        Results are ordered by priority, then by how overdue they are.
        """
        sql = f"""
            SELECT *
            FROM tasks
            WHERE {DUE_PREDICATE}
            ORDER BY {PRIORITY_ORDER}, COALESCE(next_run, '') ASC
        """
        rows = await self.query(sql, (now, stale_before))
        return [self._row_to_task(row) for row in rows]

    async def count_due_tasks(self, now: str, stale_before: str) -> int:
        row = await self.fetchone(
            f"SELECT COUNT(*) AS count FROM tasks WHERE {DUE_PREDICATE}",
            (now, stale_before),
        )
        return row["count"] if row else 0

    async def list_upcoming_tasks(self, limit: int = 10) -> List[Task]:
        rows = await self.query(
            """
            SELECT *
            FROM tasks
            WHERE status = 'active' AND next_run IS NOT NULL
            ORDER BY next_run ASC
            LIMIT ?
            """,
            (limit,),
        )
        return [self._row_to_task(row) for row in rows]

    async def find_dependent_tasks(self, task_id: str) -> List[Task]:
        sql = """
            SELECT DISTINCT t.*
            FROM tasks AS t, json_each(t.dependencies) AS d
            WHERE json_extract(d.value, '$.task_id') = ?
              AND t.status IN ('active', 'scheduled')
        """
        rows = await self.query(sql, (task_id,))
        return [self._row_to_task(row) for row in rows]

    async def list_cron_tasks(self) -> List[Task]:
        sql = """
            SELECT *
            FROM tasks
            WHERE status = 'active'
              AND cron_expression IS NOT NULL
              AND cron_expression != ''
        """
        rows = await self.query(sql)
        return [self._row_to_task(row) for row in rows]

    async def recover_interrupted_tasks(self) -> int:
        """Return tasks stuck in running/retrying to ``active``.

        Used at startup; a previous process may have died mid-execution.
        """
        return await self.execute(
            """
            UPDATE tasks
            SET status = 'active', updated_at = ?
            WHERE status IN ('running', 'retrying')
            """,
            (to_iso(utcnow()),),
        )

    async def count_tasks_by_status(self, user_id: str | None = None) -> Dict[str, int]:
        if user_id is None:
            rows = await self.query(
                "SELECT status, COUNT(*) AS count FROM tasks GROUP BY status"
            )
        else:
            rows = await self.query(
                """
                SELECT status, COUNT(*) AS count
                FROM tasks
                WHERE user_id = ?
                GROUP BY status
                """,
                (user_id,),
            )
        return {row["status"]: row["count"] for row in rows}

    # === Execution Methods ===

    async def insert_execution(self, execution: TaskExecution) -> None:
        context = execution["execution_context"]
        sql = """
            INSERT INTO task_executions (
                id, task_id, user_id, start_time, end_time, success, result,
                error, duration, retry_count, is_cached, triggered_by,
                parent_execution_id, batch_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.execute(
            sql,
            (
                execution["id"],
                execution["task_id"],
                execution["user_id"],
                execution["start_time"],
                execution["end_time"],
                int(execution["success"]),
                _dumps(execution["result"]),
                execution["error"],
                execution["duration"],
                execution["retry_count"],
                int(execution["is_cached"]),
                context["triggered_by"],
                context.get("parent_execution_id"),
                context.get("batch_id"),
            ),
        )

    async def finalize_execution(self, execution: TaskExecution) -> None:
        """Write the outcome columns of a previously inserted execution."""
        sql = """
            UPDATE task_executions
            SET end_time = ?, success = ?, result = ?, error = ?,
                duration = ?, is_cached = ?
            WHERE id = ?
        """
        await self.execute(
            sql,
            (
                execution["end_time"],
                int(execution["success"]),
                _dumps(execution["result"]),
                execution["error"],
                execution["duration"],
                int(execution["is_cached"]),
                execution["id"],
            ),
        )

    async def get_latest_execution(self, task_id: str) -> TaskExecution | None:
        """Retrieve the most recent *finished* execution of a task.

        In-flight executions (no ``end_time``) are ignored so that a
        dependency check never reads an outcome that has not happened yet.
        """
        row = await self.fetchone(
            """
            SELECT *
            FROM task_executions
            WHERE task_id = ? AND end_time IS NOT NULL
            ORDER BY start_time DESC
            LIMIT 1
            """,
            (task_id,),
        )
        return self._row_to_execution(row) if row else None

    async def get_execution(self, execution_id: str) -> TaskExecution | None:
        row = await self.fetchone(
            "SELECT * FROM task_executions WHERE id = ?", (execution_id,)
        )
        return self._row_to_execution(row) if row else None

    async def list_executions(self, task_id: str, limit: int = 10) -> List[TaskExecution]:
        rows = await self.query(
            """
            SELECT *
            FROM task_executions
            WHERE task_id = ?
            ORDER BY start_time DESC
            LIMIT ?
            """,
            (task_id, limit),
        )
        return [self._row_to_execution(row) for row in rows]

    async def list_batch_executions(self, batch_id: str) -> List[TaskExecution]:
        rows = await self.query(
            "SELECT * FROM task_executions WHERE batch_id = ? ORDER BY start_time",
            (batch_id,),
        )
        return [self._row_to_execution(row) for row in rows]

    async def delete_executions_before(self, before: str) -> int:
        return await self.execute(
            "DELETE FROM task_executions WHERE start_time < ?", (before,)
        )

    # === Cache Methods ===

    async def touch_cache_entry(self, cache_key: str, now: str) -> TaskCacheEntry | None:
        """Return the live entry for ``cache_key`` and count the hit.

        Expired entries are treated as absent.
        """
        sql = """
            UPDATE task_cache
            SET hit_count = hit_count + 1, last_accessed = ?
            WHERE cache_key = ? AND expires_at > ?
            RETURNING *
        """
        async with self._connect() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(sql, (now, cache_key, now))
            row = await cursor.fetchone()
            await conn.commit()

        if row is None:
            return None

        return TaskCacheEntry(
            cache_key=row["cache_key"],
            task_id=row["task_id"],
            result=json.loads(row["result"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            hit_count=row["hit_count"],
            last_accessed=row["last_accessed"],
        )

    async def upsert_cache_entry(self, entry: TaskCacheEntry) -> None:
        """Insert or replace the entry for its key.

        A replaced entry starts over with a zero hit count.
        """
        sql = """
            INSERT INTO task_cache (
                cache_key, task_id, result, created_at, expires_at,
                hit_count, last_accessed
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (cache_key) DO UPDATE SET
                task_id = excluded.task_id,
                result = excluded.result,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at,
                hit_count = excluded.hit_count,
                last_accessed = excluded.last_accessed
        """
        await self.execute(
            sql,
            (
                entry["cache_key"],
                entry["task_id"],
                _dumps(entry["result"]),
                entry["created_at"],
                entry["expires_at"],
                entry["hit_count"],
                entry["last_accessed"],
            ),
        )

    async def delete_expired_cache(self, now: str) -> int:
        return await self.execute(
            "DELETE FROM task_cache WHERE expires_at <= ?", (now,)
        )

    async def clear_cache(self) -> int:
        return await self.execute("DELETE FROM task_cache")

    async def count_cache_entries(self, now: str) -> int:
        row = await self.fetchone(
            "SELECT COUNT(*) AS count FROM task_cache WHERE expires_at > ?", (now,)
        )
        return row["count"] if row else 0

    # === Batch Methods ===

    async def create_batch(self, batch: TaskBatch) -> None:
        sql = """
            INSERT INTO task_batches (
                id, task_ids, status, total_tasks, successful_tasks,
                failed_tasks, parallel_executions, start_time, end_time
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.execute(
            sql,
            (
                batch["id"],
                _dumps(batch["task_ids"]),
                batch["status"],
                batch["total_tasks"],
                batch["successful_tasks"],
                batch["failed_tasks"],
                batch["parallel_executions"],
                batch["start_time"],
                batch["end_time"],
            ),
        )

    async def update_batch(self, batch_id: str, **fields: Any) -> None:
        unknown = set(fields) - BATCH_COLUMNS
        if unknown:
            raise ValueError(f"Unknown batch columns: {sorted(unknown)}")
        if not fields:
            return

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = (*fields.values(), batch_id)
        await self.execute(f"UPDATE task_batches SET {assignments} WHERE id = ?", params)

    async def get_batch(self, batch_id: str) -> TaskBatch:
        """Retrieve a batch by id.

        Raises:
            BatchNotFoundError: If the batch doesn't exist
        """
        row = await self.fetchone("SELECT * FROM task_batches WHERE id = ?", (batch_id,))
        if row is None:
            raise BatchNotFoundError(f"Batch with ID {batch_id} not found.")

        return TaskBatch(
            id=row["id"],
            task_ids=json.loads(row["task_ids"]),
            status=row["status"],
            total_tasks=row["total_tasks"],
            successful_tasks=row["successful_tasks"],
            failed_tasks=row["failed_tasks"],
            parallel_executions=row["parallel_executions"],
            start_time=row["start_time"],
            end_time=row["end_time"],
        )

    # === Analytics Methods ===

    async def upsert_analytics(
        self,
        user_id: str,
        task_id: str,
        date: str,
        *,
        success: bool,
        duration: int,
        is_cached: bool,
        retried: bool,
        error: str | None,
    ) -> None:
        """Increment the (user, task, date) bucket by one execution.

        The counter upsert and the error-set merge run in one transaction;
        the average is recomputed from the new totals inside the statement.
        """
        upsert = """
            INSERT INTO task_analytics (
                user_id, task_id, date, executions, successes, failures,
                retries, total_execution_time, average_execution_time,
                cache_hits, cache_misses, errors
            )
            VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?, ?, '[]')
            ON CONFLICT (user_id, task_id, date) DO UPDATE SET
                executions = executions + 1,
                successes = successes + excluded.successes,
                failures = failures + excluded.failures,
                retries = retries + excluded.retries,
                total_execution_time =
                    total_execution_time + excluded.total_execution_time,
                average_execution_time =
                    CAST(total_execution_time + excluded.total_execution_time AS REAL)
                    / (executions + 1),
                cache_hits = cache_hits + excluded.cache_hits,
                cache_misses = cache_misses + excluded.cache_misses
        """
        merge_error = """
            UPDATE task_analytics
            SET errors = json_insert(errors, '$[#]', ?)
            WHERE user_id = ? AND task_id = ? AND date = ?
              AND NOT EXISTS (
                  SELECT 1 FROM json_each(task_analytics.errors) WHERE value = ?
              )
        """

        async with self._connect() as conn:
            await conn.execute(
                upsert,
                (
                    user_id,
                    task_id,
                    date,
                    int(success),
                    int(not success),
                    int(retried),
                    duration,
                    float(duration),
                    int(is_cached),
                    int(not is_cached),
                ),
            )
            if error:
                await conn.execute(
                    merge_error, (error, user_id, task_id, date, error)
                )
            await conn.commit()

    async def query_analytics(
        self,
        user_id: str,
        task_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> List[TaskAnalytics]:
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]
        if task_id is not None:
            clauses.append("task_id = ?")
            params.append(task_id)
        if start_date is not None:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date is not None:
            clauses.append("date <= ?")
            params.append(end_date)

        sql = f"""
            SELECT *
            FROM task_analytics
            WHERE {' AND '.join(clauses)}
            ORDER BY date ASC, task_id ASC
        """
        rows = await self.query(sql, tuple(params))
        return [
            TaskAnalytics(
                user_id=row["user_id"],
                task_id=row["task_id"],
                date=row["date"],
                executions=row["executions"],
                successes=row["successes"],
                failures=row["failures"],
                retries=row["retries"],
                total_execution_time=row["total_execution_time"],
                average_execution_time=row["average_execution_time"],
                cache_hits=row["cache_hits"],
                cache_misses=row["cache_misses"],
                errors=json.loads(row["errors"]),
            )
            for row in rows
        ]

    async def delete_analytics_before(self, date: str) -> int:
        return await self.execute("DELETE FROM task_analytics WHERE date < ?", (date,))

    # === Template Methods ===

    async def create_template(self, template: TemplateInput) -> TaskTemplate:
        template_id = self._create_id()
        now = to_iso(utcnow())
        sql = """
            INSERT INTO task_templates (
                id, name, description, type, default_config, required_fields,
                optional_fields, default_frequency, category, tags, is_public,
                created_by, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.execute(
            sql,
            (
                template_id,
                template["name"],
                template["description"],
                template["type"],
                _dumps(template["default_config"]),
                _dumps(template["required_fields"]),
                _dumps(template["optional_fields"]),
                template["default_frequency"],
                template["category"],
                _dumps(template["tags"]),
                int(template["is_public"]),
                template["created_by"],
                now,
                now,
            ),
        )
        return await self.get_template(template_id)

    async def get_template(self, template_id: str) -> TaskTemplate:
        """Retrieve a template by id.

        Raises:
            TemplateNotFoundError: If the template doesn't exist
        """
        row = await self.fetchone(
            "SELECT * FROM task_templates WHERE id = ?", (template_id,)
        )
        if row is None:
            raise TemplateNotFoundError(f"Template with ID {template_id} not found.")
        return self._row_to_template(row)

    async def list_templates(self, **filters: Any) -> List[TaskTemplate]:
        unknown = set(filters) - TEMPLATE_FILTERS
        if unknown:
            raise ValueError(f"Unknown template filters: {sorted(unknown)}")

        clauses = []
        params: List[Any] = []
        for column, value in filters.items():
            if value is None:
                continue
            clauses.append(f"{column} = ?")
            params.append(int(value) if isinstance(value, bool) else value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.query(
            f"SELECT * FROM task_templates {where} ORDER BY category, name",
            tuple(params),
        )
        return [self._row_to_template(row) for row in rows]

    # === Log Methods ===

    async def create_log(self, task_id: str, level: str, message: str) -> None:
        """Create a log entry for a task.

        Args:
            task_id: Task the entry belongs to
            level: Log level (INFO, ERROR, WARNING, DEBUG)
            message: Log message content
        """
        await self.execute(
            """
            INSERT INTO logs (task_id, level, message, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (task_id, level, message, to_iso(utcnow())),
        )

    async def get_task_logs(self, task_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = await self.query(
            """
            SELECT level, message, created_at
            FROM logs
            WHERE task_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (task_id, limit),
        )
        return [dict(row) for row in rows]

    async def delete_logs_before(self, before: str) -> int:
        return await self.execute("DELETE FROM logs WHERE created_at < ?", (before,))

    # === Row Mapping ===

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        data = dict(row)
        for column in TASK_JSON_COLUMNS:
            data[column] = _loads(data[column])
        return Task(**data)  # type: ignore

    @staticmethod
    def _row_to_execution(row: aiosqlite.Row) -> TaskExecution:
        return TaskExecution(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            success=bool(row["success"]),
            result=_loads(row["result"]),
            error=row["error"],
            duration=row["duration"],
            retry_count=row["retry_count"],
            is_cached=bool(row["is_cached"]),
            execution_context={
                "triggered_by": row["triggered_by"],
                "parent_execution_id": row["parent_execution_id"],
                "batch_id": row["batch_id"],
            },
        )

    @staticmethod
    def _row_to_template(row: aiosqlite.Row) -> TaskTemplate:
        data = dict(row)
        for column in TEMPLATE_JSON_COLUMNS:
            data[column] = json.loads(data[column])
        data["is_public"] = bool(data["is_public"])
        data.pop("created_at", None)
        data.pop("updated_at", None)
        return TaskTemplate(**data)  # type: ignore

    # === Utility Methods ===

    def _create_id(self) -> str:
        """Generate a unique identifier.

        Returns:
            A unique hexadecimal string identifier
        """
        return uuid4().hex
