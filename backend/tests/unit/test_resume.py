"""
续跑扫描器单元测试
"""

from __future__ import annotations

import asyncio
import socket

import pytest

from panelpress.models import ExportStep, JobState
from panelpress.pipeline import ResumptionScanner, StepExecutor
from panelpress.pipeline import executor as executor_module
from panelpress.store import EventLog, JobStore


@pytest.fixture
def scanner(store: JobStore, executor: StepExecutor) -> ResumptionScanner:
    return ResumptionScanner(store, executor)


def _put_at_step(store: JobStore, job_id: int, step: ExportStep) -> None:
    job = store.require_job(job_id)
    job.mark_running()
    job.advance(step)
    store.save_progress(job)


def _messages(event_log: EventLog, job_id: int) -> list[str]:
    return [e.message for e in event_log.list_for_job(job_id)]


class TestResumptionScanner:
    """续跑扫描测试"""

    @pytest.mark.asyncio
    async def test_resumes_only_unfinished_jobs(
        self, scanner: ResumptionScanner, store: JobStore, event_log: EventLog, make_job
    ):
        draft = make_job([1], title="Draft")
        pending = make_job([2], title="Pending")
        running = make_job([3], title="Running")
        failed = make_job([4], title="Failed")
        completed = make_job([5], title="Completed")
        store.set_state(pending.id, JobState.PENDING)
        _put_at_step(store, running.id, ExportStep.DOWNLOADING_FROM_SOURCE)
        store.set_state(failed.id, JobState.FAILED)
        store.set_state(completed.id, JobState.COMPLETED)

        tasks = scanner.resume_all()
        results = await asyncio.gather(*tasks)

        assert sorted(r.id for r in results) == [pending.id, running.id]
        assert all(r.state == JobState.COMPLETED for r in results)
        for job in (draft, failed, completed):
            assert "Resuming export" not in _messages(event_log, job.id)
        assert store.require_job(draft.id).state == JobState.DRAFT
        assert store.require_job(failed.id).state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_resume_log_carries_current_step(
        self, scanner: ResumptionScanner, store: JobStore, event_log: EventLog, make_job
    ):
        job = make_job([7])
        _put_at_step(store, job.id, ExportStep.ASSEMBLING)

        await asyncio.gather(*scanner.resume_all())

        entries = event_log.list_for_job(job.id)
        assert entries[0].message == "Resuming export"
        assert entries[0].step == ExportStep.ASSEMBLING

    def test_nothing_to_resume(self, scanner: ResumptionScanner, make_job):
        make_job([1])
        assert scanner.resume_all() == []

    @pytest.mark.asyncio
    async def test_restart_at_fetching_skips_remote_check(
        self, scanner: ResumptionScanner, store: JobStore, gateway, make_job, write_pages,
        runtime_config,
    ):
        """中断于 FetchingAssets：不再检查远端物化，重新下载并覆盖已有文件"""
        job = make_job([101, 102])
        _put_at_step(store, job.id, ExportStep.FETCHING_ASSETS)
        chapter_dir = write_pages(101, ["0.jpeg"])

        [task] = scanner.resume_all()
        result = await task

        assert result.state == JobState.COMPLETED
        assert gateway.count("check_materialized") == 0
        assert gateway.count("trigger_materialization") == 0
        assert gateway.count("list_asset_locations") == 2
        assert (chapter_dir / "0.jpeg").read_bytes() == b"page-101-0"
        assert result.output_path(runtime_config.storage.exports_dir).exists()


class TestResumeAfterCrash:
    """崩溃进程遗留租约时的续跑"""

    @pytest.mark.asyncio
    async def test_waits_for_foreign_lease_to_expire(
        self, scanner: ResumptionScanner, store: JobStore, event_log: EventLog, gateway, make_job
    ):
        """其他主机遗留的租约：等待到期后接手，重新执行 FetchingAssets"""
        job = make_job([101, 102])
        _put_at_step(store, job.id, ExportStep.FETCHING_ASSETS)
        assert store.claim_job(job.id, "oldhost:1234:deadbeef", 1)

        [task] = scanner.resume_all()
        result = await asyncio.wait_for(task, timeout=10)

        assert result.state == JobState.COMPLETED
        assert gateway.count("check_materialized") == 0
        assert gateway.count("list_asset_locations") == 2
        assert _messages(event_log, job.id).count("Resuming export") == 1
        assert store.require_job(job.id).claimed_by is None

    @pytest.mark.asyncio
    async def test_takes_over_lease_of_dead_local_process(
        self, scanner: ResumptionScanner, store: JobStore, gateway, make_job, monkeypatch
    ):
        """本机已退出进程的租约：立即接管，不等待到期"""
        monkeypatch.setattr(executor_module, "_pid_alive", lambda pid: False)
        job = make_job([101])
        _put_at_step(store, job.id, ExportStep.FETCHING_ASSETS)
        assert store.claim_job(job.id, f"{socket.gethostname()}:424242:deadbeef", 600)

        [task] = scanner.resume_all()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.state == JobState.COMPLETED
        assert gateway.count("list_asset_locations") == 1

    @pytest.mark.asyncio
    async def test_job_finished_by_holder_is_not_rerun(
        self, scanner: ResumptionScanner, executor: StepExecutor, store: JobStore,
        event_log: EventLog, gateway, make_job,
    ):
        """持有者在等待期间完成任务：不再执行，也不写续跑事件"""
        executor.lease_recheck_sec = 0.01
        job = make_job([101])
        _put_at_step(store, job.id, ExportStep.ASSEMBLING)
        assert store.claim_job(job.id, "otherhost:1:cafebabe", 600)

        [task] = scanner.resume_all()
        await asyncio.sleep(0.05)
        assert not task.done()
        store.set_state(job.id, JobState.COMPLETED)
        result = await asyncio.wait_for(task, timeout=5)

        assert result.state == JobState.COMPLETED
        assert gateway.calls == []
        assert "Resuming export" not in _messages(event_log, job.id)
        assert store.require_job(job.id).claimed_by == "otherhost:1:cafebabe"
