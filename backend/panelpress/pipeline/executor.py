"""
步骤执行器 - 按固定步骤序列驱动导出任务

职责：
1. 从持久化步骤开始续跑，不重复已完成步骤
2. 每步前后写事件日志，步骤结束后持久化 step/progress
3. 步骤失败即标记 failed 并停止（任务级不重试）
4. 任务租约，防止多进程重复执行；长步骤内持续续期

测试要点：
- test_full_run_step_sequence: 完整流程步骤序列
- test_completed_job_is_noop: 已完成任务幂等
- test_triggers_only_missing: 只触发未物化章节
- test_missing_dir_marks_failed_without_artifact: 组装失败
- test_lease_renewed_on_every_poll: 轮询期间续期
- test_lease_lost_mid_step_stops_without_failing: 租约被接管
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import RuntimeConfig
from ..config.runtime_config import PollingConfig
from ..interfaces import IArchiveAssembler, IContentGateway, LeaseLost, RemoteUnavailable
from ..models import DownloaderState, ExportFormat, ExportJob, ExportStep, JobState
from ..models.job import utcnow
from .fetcher import AssetFetcher
from .stages import PipelineStage, remaining_stages

if TYPE_CHECKING:
    from ..store import EventLog, JobStore

logger = logging.getLogger(__name__)

# 等待他人租约到期时的最短重试间隔
LEASE_RETRY_MIN_SEC = 0.05
# 等待期间重新检查任务状态的最长间隔
LEASE_RECHECK_SEC = 5.0


def default_owner_id() -> str:
    """执行器实例标识：<主机>:<pid>:<随机>"""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def owner_is_dead(owner: str) -> bool:
    """租约持有者是否为本机上已退出的进程（无法判断时视为存活）"""
    host, _, rest = owner.partition(":")
    pid_text = rest.split(":", 1)[0]
    if host != socket.gethostname() or not pid_text.isdigit():
        return False
    pid = int(pid_text)
    if pid == os.getpid():
        return False
    return not _pid_alive(pid)


class StepExecutor:
    """导出步骤执行器"""

    def __init__(
        self,
        store: JobStore,
        event_log: EventLog,
        gateway: IContentGateway,
        assemblers: dict[ExportFormat, IArchiveAssembler],
        chapters_dir: Path,
        polling: PollingConfig | None = None,
        max_downloads: int = 8,
        lease_ttl_sec: int = 600,
        owner: str | None = None,
    ):
        self.store = store
        self.event_log = event_log
        self.gateway = gateway
        self.assemblers = assemblers
        self.polling = polling or PollingConfig()
        self.fetcher = AssetFetcher(gateway, chapters_dir, max_downloads)
        self.lease_ttl_sec = lease_ttl_sec
        self.lease_recheck_sec = LEASE_RECHECK_SEC
        self.owner = owner or default_owner_id()
        self._tasks: set[asyncio.Task] = set()
        self._active: set[int] = set()

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        store: JobStore,
        event_log: EventLog,
        gateway: IContentGateway,
    ) -> StepExecutor:
        from ..assemblers import build_assemblers

        return cls(
            store=store,
            event_log=event_log,
            gateway=gateway,
            assemblers=build_assemblers(
                config.storage.chapters_dir, config.storage.exports_dir, event_log
            ),
            chapters_dir=config.storage.chapters_dir,
            polling=config.polling,
            max_downloads=config.concurrency.max_downloads,
            lease_ttl_sec=config.lease.ttl_sec,
        )

    # === 调度 ===

    def spawn(self, job_id: int, resuming: bool = False) -> asyncio.Task:
        """在后台启动任务执行（不等待完成）"""
        task = asyncio.create_task(
            self.run(job_id, resuming=resuming), name=f"export-{job_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"后台任务异常退出 {task.get_name()}: {exc!r}")

    async def wait_all(self) -> None:
        """等待所有后台任务结束"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === 执行 ===

    async def run(self, job_id: int, resuming: bool = False) -> ExportJob:
        """
        执行导出任务

        Args:
            job_id: 任务ID
            resuming: 续跑模式。租约被占用时等待其到期（或接管已退出进程的租约），
                领取成功后写入 "Resuming export"

        Raises:
            RecordNotFound: 任务不存在（步骤内的错误不会抛出）
        """
        job = self.store.require_job(job_id)
        if job.state == JobState.COMPLETED:
            return job

        if job_id in self._active:
            logger.warning(f"[{job_id}] 任务已在本执行器中运行，跳过")
            return job

        self._active.add(job_id)
        try:
            if not await self._acquire_lease(job_id, wait=resuming):
                return self.store.require_job(job_id)
            try:
                return await self._run_claimed(job_id, resuming)
            finally:
                self.store.release_job(job_id, self.owner)
        finally:
            self._active.discard(job_id)

    async def _run_claimed(self, job_id: int, resuming: bool) -> ExportJob:
        # 等待租约期间任务可能已被他人推进
        job = self.store.require_job(job_id)
        if job.state == JobState.COMPLETED or (resuming and not job.is_resumable):
            return job

        if resuming:
            self.event_log.append(job.id, job.step, "Resuming export")
        job.mark_running()
        self.store.save_progress(job)

        for stage in remaining_stages(job.step):
            self.event_log.append(job.id, stage.step, "Starting step")
            logger.info(f"[{job.id}] 开始步骤: {stage.name}")
            try:
                await self._execute_stage(job, stage)
                self._renew_lease(job.id)
            except LeaseLost:
                return self._abandon(job, stage)
            except Exception as e:
                if not self.store.renew_lease(job.id, self.owner, self.lease_ttl_sec):
                    return self._abandon(job, stage)
                reason = f"{type(e).__name__}: {e}"
                logger.error(f"[{job.id}] 步骤失败 {stage.name}: {reason}")
                job.mark_failed()
                self.store.save_progress(job)
                self.event_log.append(job.id, stage.step, f"step failed: {reason}")
                return job

            self.store.save_progress(job)
            self.event_log.append(job.id, stage.step, "Finished step")

        logger.info(f"[{job.id}] 导出完成: {job.title}")
        return job

    def _abandon(self, job: ExportJob, stage: PipelineStage) -> ExportJob:
        """租约已失去：不再写入任何状态，交由新持有者继续"""
        logger.warning(f"[{job.id}] 租约已被其他执行器接管，停止执行: {stage.name}")
        return self.store.require_job(job.id)

    # === 租约 ===

    async def _acquire_lease(self, job_id: int, wait: bool) -> bool:
        """
        领取任务租约

        wait=True 时：持有者为本机已退出的进程则直接接管，否则等待其租约到期后重试；
        等待期间任务结束（完成/失败）则放弃。
        """
        while True:
            if self.store.claim_job(job_id, self.owner, self.lease_ttl_sec):
                return True

            job = self.store.require_job(job_id)
            holder = job.claimed_by
            if not wait or not job.is_resumable:
                logger.warning(f"[{job_id}] 任务已被其他执行器领取（{holder}），跳过")
                return False
            if holder is None:
                continue

            if owner_is_dead(holder) and self.store.take_over_lease(
                job_id, holder, self.owner, self.lease_ttl_sec
            ):
                logger.warning(f"[{job_id}] 接管已退出进程的租约: {holder}")
                return True

            delay = self._lease_wait_sec(job)
            logger.info(f"[{job_id}] 等待 {holder} 的租约到期（{delay:.1f}s）")
            await asyncio.sleep(delay)

    def _lease_wait_sec(self, job: ExportJob) -> float:
        if job.lease_expires_at is None:
            return LEASE_RETRY_MIN_SEC
        remaining = (job.lease_expires_at - utcnow()).total_seconds()
        return min(max(remaining, LEASE_RETRY_MIN_SEC), self.lease_recheck_sec)

    def _renew_lease(self, job_id: int) -> None:
        if not self.store.renew_lease(job_id, self.owner, self.lease_ttl_sec):
            raise LeaseLost(f"Lease on export {job_id} is no longer held by {self.owner}")

    # === 步骤 ===

    async def _execute_stage(self, job: ExportJob, stage: PipelineStage) -> None:
        """执行单个步骤，并把任务推进到下一步"""
        if stage.step == ExportStep.BEGIN:
            job.advance(ExportStep.DOWNLOADING_FROM_SOURCE, stage.progress_end)

        elif stage.step == ExportStep.DOWNLOADING_FROM_SOURCE:
            await self._stage_download_from_source(job)
            job.advance(ExportStep.FETCHING_ASSETS, stage.progress_end)

        elif stage.step == ExportStep.FETCHING_ASSETS:
            await self._stage_fetch_assets(job, stage)
            job.advance(ExportStep.ASSEMBLING, stage.progress_end)

        elif stage.step == ExportStep.ASSEMBLING:
            await self._stage_assemble(job)
            job.advance(ExportStep.COMPLETE, stage.progress_end)

        elif stage.step == ExportStep.COMPLETE:
            job.mark_completed()

    async def _stage_download_from_source(self, job: ExportJob) -> None:
        """确保远端已落地全部章节"""
        ids = self.store.require_chapters(job.id)
        status = await self.gateway.check_materialized(ids)
        missing = sorted(cid for cid, ready in status.items() if not ready)

        if not missing:
            logger.info(f"[{job.id}] 章节均已在远端落地，跳过下载")
            self.event_log.append(
                job.id, job.step, "Skipped downloading from source - all chapters already downloaded"
            )
            return

        await self.gateway.trigger_materialization(missing)
        polls = await self.wait_for_materialization(job.id)
        logger.info(f"[{job.id}] 远端下载完成（轮询 {polls} 次）")

    async def wait_for_materialization(self, job_id: int) -> int:
        """
        轮询远端下载器直到 stopped

        间隔按 backoff_factor 指数增长并以 max_interval_sec 封顶；
        超过 max_wait_sec 抛出 RemoteUnavailable。每次轮询后续期任务租约。

        Returns:
            轮询次数
        """
        cfg = self.polling
        interval = cfg.interval_sec
        started = time.monotonic()
        polls = 0
        while True:
            polls += 1
            state = await self.gateway.poll_materialization_progress()
            self._renew_lease(job_id)
            if state == DownloaderState.STOPPED:
                return polls
            elapsed = time.monotonic() - started
            if cfg.max_wait_sec is not None and elapsed >= cfg.max_wait_sec:
                raise RemoteUnavailable(
                    f"Remote download still running after {elapsed:.0f}s"
                )
            await asyncio.sleep(interval)
            interval = min(interval * cfg.backoff_factor, cfg.max_interval_sec)

    async def _stage_fetch_assets(self, job: ExportJob, stage: PipelineStage) -> None:
        """下载所有章节页面到本地"""
        ids = self.store.require_chapters(job.id)

        async def _on_item_done(done: int, total: int) -> None:
            self._renew_lease(job.id)
            job.progress = max(job.progress, stage.progress_at(done, total))
            self.store.set_progress(job.id, job.progress)

        await self.fetcher.fetch_all(ids, on_item_done=_on_item_done)

    async def _stage_assemble(self, job: ExportJob) -> None:
        """组装最终产物"""
        ids = self.store.require_chapters(job.id)
        items = await self.gateway.describe_items(ids)
        self._renew_lease(job.id)
        assembler = self.assemblers[job.format]
        await assembler.assemble(job, items)
