"""
续跑扫描器 - 进程启动时重新拉起未完成的任务

对 in_progress / pending 任务以续跑模式各自独立后台执行，不等待完成。
"Resuming export" 事件由执行器在领取租约成功后写入；
租约仍被占用时执行器等待其到期，持有者为本机已退出的进程则直接接管。
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..models import JobState

if TYPE_CHECKING:
    from ..store import JobStore
    from .executor import StepExecutor

logger = logging.getLogger(__name__)

RESUMABLE_STATES = (JobState.IN_PROGRESS, JobState.PENDING)


class ResumptionScanner:
    """未完成任务续跑扫描器"""

    def __init__(self, store: JobStore, executor: StepExecutor):
        self.store = store
        self.executor = executor

    def resume_all(self) -> list[asyncio.Task]:
        """拉起全部可续跑任务，返回后台任务列表（需在事件循环内调用）"""
        jobs = self.store.find_jobs_by_state(RESUMABLE_STATES)
        if not jobs:
            logger.info("没有需要续跑的任务")
            return []

        tasks = []
        for job in jobs:
            logger.info(f"[{job.id}] 续跑任务，当前步骤: {job.step.value}")
            tasks.append(self.executor.spawn(job.id, resuming=True))
        return tasks
