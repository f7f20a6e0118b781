"""
命令行入口 - 运维操作

子命令：
- create   创建草稿任务
- begin    发起执行并等待完成
- run      直接执行（含失败任务手动重跑）
- resume   启动续跑扫描并等待全部任务结束
- log      打印任务事件日志
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from .config import RuntimeConfig, configure_logging, get_config, reload_config
from .gateway import SuwayomiGateway
from .models import ExportFormat, JobState
from .pipeline import JobManager, ResumptionScanner, StepExecutor
from .store import EventLog, JobStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="panelpress", description="章节导出流水线")
    parser.add_argument("--config", type=Path, default=None, help="运行期配置 YAML 路径")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="创建草稿任务")
    create.add_argument("--title", required=True)
    create.add_argument("--author", default="")
    create.add_argument(
        "--format",
        choices=[f.value for f in ExportFormat],
        default=ExportFormat.EPUB.value,
    )
    create.add_argument("--chapters", type=int, nargs="+", required=True)

    for name, help_text in (("begin", "发起执行"), ("run", "直接执行/重跑"), ("log", "打印事件日志")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("job_id", type=int)

    sub.add_parser("resume", help="续跑未完成任务")
    return parser


async def _run_async(args: argparse.Namespace, config: RuntimeConfig, store: JobStore) -> int:
    event_log = EventLog(store)
    async with SuwayomiGateway.from_config(config) as gateway:
        executor = StepExecutor.from_config(config, store, event_log, gateway)

        if args.command == "begin":
            manager = JobManager(store, event_log, config.storage.exports_dir, executor)
            task = manager.begin(args.job_id)
            job = await task
        elif args.command == "run":
            job = await executor.run(args.job_id)
        else:
            scanner = ResumptionScanner(store, executor)
            scanner.resume_all()
            await executor.wait_all()
            return 0

    print(f"{job.id}\t{job.state.value}\t{job.step.value}\t{job.progress}%")
    return 0 if job.state == JobState.COMPLETED else 1


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    config = reload_config(args.config) if args.config else get_config()
    configure_logging(config)
    config.ensure_dirs()

    store = JobStore(config.storage.db_path)
    try:
        if args.command == "create":
            manager = JobManager(store, EventLog(store), config.storage.exports_dir)
            job = manager.create_job(
                args.title, args.author, args.chapters, ExportFormat(args.format)
            )
            print(f"{job.id}\t{job.title}\t{job.format.value}")
            return 0

        if args.command == "log":
            for entry in EventLog(store).list_for_job(args.job_id):
                print(entry)
            return 0

        return asyncio.run(_run_async(args, config, store))
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
