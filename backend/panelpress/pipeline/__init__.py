"""
流水线模块 - 任务编排与执行

子模块：
- stages: 流水线各阶段定义
- fetcher: 章节资源有界并发下载
- executor: 步骤执行器
- job_manager: 任务管理
- resume: 启动续跑扫描
"""

from .executor import StepExecutor
from .fetcher import AssetFetcher
from .job_manager import JobManager
from .resume import ResumptionScanner
from .stages import EXPORT_STAGES, PipelineStage, remaining_stages

__all__ = [
    "PipelineStage",
    "EXPORT_STAGES",
    "remaining_stages",
    "AssetFetcher",
    "StepExecutor",
    "JobManager",
    "ResumptionScanner",
]
