"""
事件日志 - 导出任务的只追加审计记录

仅用于审计与外部展示，执行器的控制流从不读取。
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..models import EventLogEntry, ExportStep
from ..models.job import utcnow
from .db import JobStore

logger = logging.getLogger(__name__)


class EventLog:
    """事件日志写入器"""

    def __init__(self, store: JobStore):
        self.store = store

    def append(self, job_id: int, step: ExportStep, message: str) -> EventLogEntry:
        """追加一条事件"""
        now = utcnow()
        with self.store.conn:
            cur = self.store.conn.execute(
                "INSERT INTO export_logs(job_id, step, message, timestamp) VALUES (?, ?, ?, ?)",
                (job_id, step.value, message, now.isoformat()),
            )
        entry = EventLogEntry(
            id=int(cur.lastrowid),
            job_id=job_id,
            step=step,
            message=message,
            timestamp=now,
        )
        logger.info(str(entry))
        return entry

    def list_for_job(self, job_id: int) -> list[EventLogEntry]:
        """按时间顺序读取任务事件"""
        rows = self.store.conn.execute(
            """
            SELECT id, job_id, step, message, timestamp
            FROM export_logs WHERE job_id = ?
            ORDER BY timestamp ASC, id ASC
            """,
            (job_id,),
        ).fetchall()
        return [
            EventLogEntry(
                id=r["id"],
                job_id=r["job_id"],
                step=ExportStep(r["step"]),
                message=r["message"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
            )
            for r in rows
        ]
