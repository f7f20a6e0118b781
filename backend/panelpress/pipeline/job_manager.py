"""
任务管理器 - 任务创建/草稿配置/发起执行

职责：
1. 创建 Draft 任务并写入章节集合
2. 草稿阶段修改标题/作者/格式、整体替换章节
3. 产物重名在创建/改名时解决（追加 " (n)" 后缀）
4. 发起执行（Draft → Pending → 后台执行）

测试要点：
- test_create_job: 创建任务
- test_title_collision_suffix: 重名后缀
- test_set_chapters_only_in_draft: 非草稿不可改章节
- test_begin_marks_pending: 发起执行
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..interfaces import InvalidJobState
from ..models import ExportFormat, ExportJob, ExportStep, JobState, sanitize_title

if TYPE_CHECKING:
    from ..store import EventLog, JobStore
    from .executor import StepExecutor

logger = logging.getLogger(__name__)

MAX_INSERT_ATTEMPTS = 3


class JobManager:
    """导出任务管理器"""

    def __init__(
        self,
        store: JobStore,
        event_log: EventLog,
        exports_dir: Path,
        executor: StepExecutor | None = None,
    ):
        self.store = store
        self.event_log = event_log
        self.exports_dir = Path(exports_dir)
        self.executor = executor

    def create_job(
        self,
        title: str,
        author: str,
        chapter_ids: Iterable[int],
        fmt: ExportFormat = ExportFormat.EPUB,
    ) -> ExportJob:
        """创建 Draft 任务"""
        ids = set(chapter_ids)
        for attempt in range(MAX_INSERT_ATTEMPTS):
            unique = self.unique_title(title, fmt)
            try:
                job = self.store.insert_job(unique, author, fmt)
                break
            except sqlite3.IntegrityError:
                if attempt == MAX_INSERT_ATTEMPTS - 1:
                    raise
                logger.warning(f"标题冲突，重新生成: {unique}")

        self.store.replace_chapters(job.id, ids)
        self.event_log.append(job.id, job.step, f"Export created with {len(ids)} chapters")
        return job

    def get_job(self, job_id: int) -> ExportJob:
        return self.store.require_job(job_id)

    def configure_job(
        self, job_id: int, title: str, author: str, fmt: ExportFormat
    ) -> ExportJob:
        """修改草稿任务的标题/作者/格式"""
        job = self._require_draft(job_id)
        unique = self.unique_title(title, fmt, exclude_id=job.id)
        self.store.update_job_config(job.id, unique, author, fmt)
        return self.store.require_job(job.id)

    def set_chapters(self, job_id: int, chapter_ids: Iterable[int]) -> None:
        """整体替换草稿任务的章节集合"""
        job = self._require_draft(job_id)
        self.store.replace_chapters(job.id, chapter_ids)

    def begin(self, job_id: int) -> asyncio.Task | None:
        """
        发起执行：标记 Pending 并在后台启动执行器

        Returns:
            后台任务（未配置执行器时为 None，由下次启动的续跑扫描接手）
        """
        job = self._require_draft(job_id)
        self.store.require_chapters(job.id)
        self.store.set_state(job.id, JobState.PENDING)
        self.event_log.append(job.id, ExportStep.BEGIN, "Export queued")
        if self.executor is None:
            return None
        return self.executor.spawn(job.id)

    def unique_title(
        self, title: str, fmt: ExportFormat, exclude_id: int | None = None
    ) -> str:
        """为标题追加后缀直到任务标题与产物文件名均不冲突"""
        base = title.strip() or "export"
        candidate = base
        n = 2
        while self._title_taken(candidate, fmt, exclude_id):
            candidate = f"{base} ({n})"
            n += 1
        return candidate

    def _title_taken(self, title: str, fmt: ExportFormat, exclude_id: int | None) -> bool:
        if self.store.title_exists(title, exclude_id):
            return True
        filename = f"{sanitize_title(title)}.{fmt.extension}"
        if (self.exports_dir / filename).exists():
            return True
        return any(
            j.filename == filename for j in self.store.list_jobs() if j.id != exclude_id
        )

    def _require_draft(self, job_id: int) -> ExportJob:
        job = self.store.require_job(job_id)
        if not job.is_draft:
            raise InvalidJobState(f"Export {job_id} is {job.state.value}, not draft")
        return job
