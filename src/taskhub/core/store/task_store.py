"""TaskStore SQLite 实现

assigned_to 以 JSON 数组存储，按成员查询时使用 json_each 展开。
删除为软删除（is_deleted = 1），默认查询均排除已删除任务。
时间统一以 UTC ISO 8601 字符串存储，区间比较直接使用字符串序。
"""

import json
from datetime import UTC, datetime

import aiosqlite

from ..models.enums import PRIORITY_RANK, TaskPriority, TaskStatus
from ..models.task import Task

# 优先级排序表达式：high -> medium -> low
_PRIORITY_ORDER = "CASE priority {} ELSE {} END".format(
    " ".join(f"WHEN '{p.value}' THEN {rank}" for p, rank in PRIORITY_RANK.items()),
    len(PRIORITY_RANK),
)


def to_utc_iso(value: datetime) -> str:
    """统一转换为 UTC ISO 字符串（naive 时间视为 UTC）"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, title, description, priority, status,
                               due_date, assigned_to, created_by, attachment_url,
                               attachment_ref, is_deleted, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.title,
                task.description,
                task.priority.value,
                task.status.value,
                to_utc_iso(task.due_date),
                json.dumps(task.assigned_to),
                task.created_by,
                task.attachment_url,
                task.attachment_ref,
                int(task.is_deleted),
                to_utc_iso(task.created_at),
                to_utc_iso(task.updated_at),
            ),
        )

    async def get_task(self, task_id: str, include_deleted: bool = False) -> Task | None:
        """根据 task_id 查询任务（默认不返回已软删除的任务）"""
        sql = "SELECT * FROM tasks WHERE task_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        cursor = await self._conn.execute(sql, (task_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, offset: int = 0, limit: int | None = None) -> list[Task]:
        """分页查询未删除任务，按优先级（高在前）再按 created_at 倒序"""
        sql = (
            "SELECT * FROM tasks WHERE is_deleted = 0 "
            f"ORDER BY {_PRIORITY_ORDER}, created_at DESC"
        )
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_tasks(self) -> int:
        """统计未删除任务数量"""
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE is_deleted = 0"
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_tasks_for_user(self, user_id: str) -> list[Task]:
        """查询指定用户被分配的未删除任务"""
        cursor = await self._conn.execute(
            f"""
            SELECT * FROM tasks
            WHERE is_deleted = 0
              AND EXISTS (
                  SELECT 1 FROM json_each(tasks.assigned_to) WHERE value = ?
              )
            ORDER BY {_PRIORITY_ORDER}, created_at DESC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_pending_due_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Task]:
        """查询截止时间落在 [start, end] 内的未删除 pending 任务"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM tasks
            WHERE is_deleted = 0
              AND status = 'pending'
              AND due_date >= ?
              AND due_date <= ?
            ORDER BY due_date ASC
            """,
            (to_utc_iso(start), to_utc_iso(end)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    # ------------------------------------------------------------------
    # 按列更新：每条 UPDATE 只改动本次变更涉及的列，
    # 并发的不同变更不会互相覆盖。返回值表示是否命中未删除的任务。
    # ------------------------------------------------------------------

    async def update_details(
        self,
        task_id: str,
        *,
        title: str,
        description: str,
        priority: TaskPriority,
        due_date: datetime,
        assigned_to: list[str],
        updated_at: datetime,
    ) -> bool:
        """覆盖可编辑字段（标题、描述、优先级、截止时间、成员）"""
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET title = ?, description = ?, priority = ?, due_date = ?,
                assigned_to = ?, updated_at = ?
            WHERE task_id = ? AND is_deleted = 0
            """,
            (
                title,
                description,
                priority.value,
                to_utc_iso(due_date),
                json.dumps(assigned_to),
                to_utc_iso(updated_at),
                task_id,
            ),
        )
        return cursor.rowcount > 0

    async def set_status(self, task_id: str, status: TaskStatus, updated_at: datetime) -> bool:
        cursor = await self._conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE task_id = ? AND is_deleted = 0",
            (status.value, to_utc_iso(updated_at), task_id),
        )
        return cursor.rowcount > 0

    async def set_attachment(
        self,
        task_id: str,
        attachment_url: str,
        attachment_ref: str,
        updated_at: datetime,
    ) -> bool:
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET attachment_url = ?, attachment_ref = ?, updated_at = ?
            WHERE task_id = ? AND is_deleted = 0
            """,
            (attachment_url, attachment_ref, to_utc_iso(updated_at), task_id),
        )
        return cursor.rowcount > 0

    async def add_member(self, task_id: str, user_id: str, updated_at: datetime) -> bool:
        """追加成员；已是成员时不改动并返回 False"""
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET assigned_to = json_insert(assigned_to, '$[#]', ?), updated_at = ?
            WHERE task_id = ? AND is_deleted = 0
              AND NOT EXISTS (
                  SELECT 1 FROM json_each(tasks.assigned_to) WHERE value = ?
              )
            """,
            (user_id, to_utc_iso(updated_at), task_id, user_id),
        )
        return cursor.rowcount > 0

    async def remove_member(self, task_id: str, user_id: str, updated_at: datetime) -> bool:
        """移除成员；不是成员时不改动并返回 False"""
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET assigned_to = (
                    SELECT json_group_array(value)
                    FROM json_each(tasks.assigned_to)
                    WHERE value != ?
                ),
                updated_at = ?
            WHERE task_id = ? AND is_deleted = 0
              AND EXISTS (
                  SELECT 1 FROM json_each(tasks.assigned_to) WHERE value = ?
              )
            """,
            (user_id, to_utc_iso(updated_at), task_id, user_id),
        )
        return cursor.rowcount > 0

    async def mark_deleted(self, task_id: str, updated_at: datetime) -> bool:
        """软删除"""
        cursor = await self._conn.execute(
            "UPDATE tasks SET is_deleted = 1, updated_at = ? WHERE task_id = ? AND is_deleted = 0",
            (to_utc_iso(updated_at), task_id),
        )
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row["task_id"],
            title=row["title"],
            description=row["description"],
            priority=row["priority"],
            status=row["status"],
            due_date=datetime.fromisoformat(row["due_date"]),
            assigned_to=json.loads(row["assigned_to"]),
            created_by=row["created_by"],
            attachment_url=row["attachment_url"],
            attachment_ref=row["attachment_ref"],
            is_deleted=bool(row["is_deleted"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
