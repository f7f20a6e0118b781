"""
任务存储 - SQLite 持久化导出任务与章节关联

职责：
1. 建表（export_jobs / export_chapters / export_logs）
2. 任务创建/查询/单行事务更新
3. 章节集合整体替换（单事务）
4. 任务租约（claimed_by + lease_expires_at）

测试要点：
- test_insert_and_get_job: 创建与读取
- test_replace_chapters_atomic: 章节集合整体替换
- test_claim_is_exclusive: 租约互斥
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from ..interfaces import RecordNotFound
from ..models import ExportFormat, ExportJob, ExportStep, JobState
from ..models.job import utcnow

DEFAULT_SQLITE_TIMEOUT_SECONDS = 30.0
DEFAULT_BUSY_TIMEOUT_MS = 8_000

_SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS export_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL UNIQUE,
    author TEXT NOT NULL DEFAULT '',
    format TEXT NOT NULL,
    state TEXT NOT NULL,
    step TEXT NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    claimed_by TEXT,
    lease_expires_at TEXT
);

CREATE TABLE IF NOT EXISTS export_chapters (
    job_id INTEGER NOT NULL,
    chapter_id INTEGER NOT NULL,
    PRIMARY KEY (job_id, chapter_id),
    FOREIGN KEY(job_id) REFERENCES export_jobs(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS export_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL,
    step TEXT NOT NULL,
    message TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY(job_id) REFERENCES export_jobs(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_export_jobs_state ON export_jobs(state);
CREATE INDEX IF NOT EXISTS idx_export_logs_job_ts ON export_logs(job_id, timestamp, id);
"""

_JOB_COLUMNS = (
    "id, title, author, format, state, step, progress, created_at, claimed_by, lease_expires_at"
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _row_to_job(row: sqlite3.Row) -> ExportJob:
    lease = row["lease_expires_at"]
    return ExportJob(
        id=row["id"],
        title=row["title"],
        author=row["author"],
        format=ExportFormat(row["format"]),
        state=JobState(row["state"]),
        step=ExportStep(row["step"]),
        progress=row["progress"],
        created_at=datetime.fromisoformat(row["created_at"]),
        claimed_by=row["claimed_by"],
        lease_expires_at=datetime.fromisoformat(lease) if lease else None,
    )


class JobStore:
    """导出任务存储（SQLite）"""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, timeout=DEFAULT_SQLITE_TIMEOUT_SECONDS)
        self.conn.row_factory = sqlite3.Row
        self._configure_connection()
        self.init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute(f"PRAGMA busy_timeout = {int(DEFAULT_BUSY_TIMEOUT_MS)}")
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.execute("PRAGMA synchronous = NORMAL")

    def init_schema(self) -> None:
        with self.conn:
            self.conn.executescript(_SCHEMA_SQL)

    def close(self) -> None:
        self.conn.close()

    # === 任务 ===

    def insert_job(self, title: str, author: str, fmt: ExportFormat) -> ExportJob:
        """插入 Draft 任务（标题冲突时抛出 sqlite3.IntegrityError）"""
        now = utcnow()
        with self.conn:
            cur = self.conn.execute(
                """
                INSERT INTO export_jobs(title, author, format, state, step, progress, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (title, author, fmt.value, JobState.DRAFT.value, ExportStep.BEGIN.value, _ts(now)),
            )
        return self.require_job(int(cur.lastrowid))

    def get_job(self, job_id: int) -> ExportJob | None:
        row = self.conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM export_jobs WHERE id = ?",
            (job_id,),
        ).fetchone()
        return _row_to_job(row) if row else None

    def require_job(self, job_id: int) -> ExportJob:
        job = self.get_job(job_id)
        if job is None:
            raise RecordNotFound(f"Export {job_id} not found")
        return job

    def list_jobs(self) -> list[ExportJob]:
        rows = self.conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM export_jobs ORDER BY id ASC"
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def find_jobs_by_state(self, states: Iterable[JobState]) -> list[ExportJob]:
        values = [s.value for s in states]
        if not values:
            return []
        placeholders = ",".join("?" for _ in values)
        rows = self.conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM export_jobs WHERE state IN ({placeholders}) ORDER BY id ASC",
            values,
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def title_exists(self, title: str, exclude_id: int | None = None) -> bool:
        row = self.conn.execute(
            "SELECT id FROM export_jobs WHERE title = ? AND id IS NOT ?",
            (title, exclude_id),
        ).fetchone()
        return row is not None

    def update_job_config(
        self, job_id: int, title: str, author: str, fmt: ExportFormat
    ) -> None:
        self._update_one(
            "UPDATE export_jobs SET title = ?, author = ?, format = ? WHERE id = ?",
            (title, author, fmt.value, job_id),
        )

    def set_state(self, job_id: int, state: JobState) -> None:
        self._update_one(
            "UPDATE export_jobs SET state = ? WHERE id = ?",
            (state.value, job_id),
        )

    def save_progress(self, job: ExportJob) -> None:
        """持久化 state/step/progress（单行事务）"""
        self._update_one(
            "UPDATE export_jobs SET state = ?, step = ?, progress = ? WHERE id = ?",
            (job.state.value, job.step.value, job.progress, job.id),
        )

    def set_progress(self, job_id: int, progress: int) -> None:
        self._update_one(
            "UPDATE export_jobs SET progress = ? WHERE id = ?",
            (progress, job_id),
        )

    def _update_one(self, sql: str, params: tuple) -> None:
        with self.conn:
            cur = self.conn.execute(sql, params)
        if cur.rowcount == 0:
            raise RecordNotFound(f"Export {params[-1]} not found")

    # === 章节集合 ===

    def replace_chapters(self, job_id: int, chapter_ids: Iterable[int]) -> None:
        """整体替换章节集合（单事务）"""
        ids = sorted({int(c) for c in chapter_ids})
        self.require_job(job_id)
        with self.conn:
            self.conn.execute("DELETE FROM export_chapters WHERE job_id = ?", (job_id,))
            self.conn.executemany(
                "INSERT INTO export_chapters(job_id, chapter_id) VALUES (?, ?)",
                [(job_id, cid) for cid in ids],
            )

    def get_chapters(self, job_id: int) -> set[int]:
        rows = self.conn.execute(
            "SELECT chapter_id FROM export_chapters WHERE job_id = ?",
            (job_id,),
        ).fetchall()
        return {int(r["chapter_id"]) for r in rows}

    def require_chapters(self, job_id: int) -> set[int]:
        chapters = self.get_chapters(job_id)
        if not chapters:
            raise RecordNotFound(f"Export {job_id} has no chapters")
        return chapters

    # === 租约 ===

    def claim_job(self, job_id: int, owner: str, ttl_sec: int) -> bool:
        """
        原子领取任务租约

        未被领取、租约已过期或本就属于 owner 时领取成功。
        """
        now = utcnow()
        expires = now + timedelta(seconds=ttl_sec)
        with self.conn:
            cur = self.conn.execute(
                """
                UPDATE export_jobs
                SET claimed_by = ?, lease_expires_at = ?
                WHERE id = ?
                  AND (claimed_by IS NULL OR claimed_by = ? OR lease_expires_at < ?)
                """,
                (owner, _ts(expires), job_id, owner, _ts(now)),
            )
        return cur.rowcount == 1

    def renew_lease(self, job_id: int, owner: str, ttl_sec: int) -> bool:
        """续期租约；租约已不属于 owner 时返回 False"""
        expires = utcnow() + timedelta(seconds=ttl_sec)
        with self.conn:
            cur = self.conn.execute(
                "UPDATE export_jobs SET lease_expires_at = ? WHERE id = ? AND claimed_by = ?",
                (_ts(expires), job_id, owner),
            )
        return cur.rowcount == 1

    def take_over_lease(self, job_id: int, previous: str, owner: str, ttl_sec: int) -> bool:
        """接管已确认失效的持有者 previous 的租约（持有者已变化时失败）"""
        expires = utcnow() + timedelta(seconds=ttl_sec)
        with self.conn:
            cur = self.conn.execute(
                """
                UPDATE export_jobs SET claimed_by = ?, lease_expires_at = ?
                WHERE id = ? AND claimed_by = ?
                """,
                (owner, _ts(expires), job_id, previous),
            )
        return cur.rowcount == 1

    def release_job(self, job_id: int, owner: str) -> None:
        with self.conn:
            self.conn.execute(
                """
                UPDATE export_jobs SET claimed_by = NULL, lease_expires_at = NULL
                WHERE id = ? AND claimed_by = ?
                """,
                (job_id, owner),
            )
