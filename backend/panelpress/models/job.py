"""
导出任务模型 - 定义任务状态、步骤与生命周期

两轴模型：
- JobState: 生命周期（draft → pending → in_progress → completed|failed）
- ExportStep: 有序步骤（begin → ... → complete），仅在 in_progress 时前进
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class JobState(str, Enum):
    """任务生命周期状态"""
    DRAFT = "draft"
    PENDING = "pending"          # 已发起、执行器尚未接手
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportStep(str, Enum):
    """导出步骤（顺序见 EXPORT_STEPS）"""
    BEGIN = "begin"
    DOWNLOADING_FROM_SOURCE = "downloading_from_source"
    FETCHING_ASSETS = "fetching_assets"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]

    @property
    def position(self) -> int:
        return EXPORT_STEPS.index(self)

    def next(self) -> ExportStep:
        """下一步骤（complete 之后仍为 complete）"""
        idx = self.position
        return EXPORT_STEPS[min(idx + 1, len(EXPORT_STEPS) - 1)]


EXPORT_STEPS: list[ExportStep] = [
    ExportStep.BEGIN,
    ExportStep.DOWNLOADING_FROM_SOURCE,
    ExportStep.FETCHING_ASSETS,
    ExportStep.ASSEMBLING,
    ExportStep.COMPLETE,
]

_STEP_LABELS = {
    ExportStep.BEGIN: "Draft",
    ExportStep.DOWNLOADING_FROM_SOURCE: "Downloading from source",
    ExportStep.FETCHING_ASSETS: "Fetching assets",
    ExportStep.ASSEMBLING: "Assembling file",
    ExportStep.COMPLETE: "Complete",
}


class ExportFormat(str, Enum):
    """输出格式"""
    EPUB = "epub"   # 文档归档（可重排）
    CBZ = "cbz"     # 图片归档

    @property
    def extension(self) -> str:
        return self.value


# 文件名中不允许出现的字符
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_title(title: str) -> str:
    """把任务标题转换为安全的文件名主干"""
    cleaned = _UNSAFE_CHARS.sub(" ", title)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip(" .")
    return cleaned or "export"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportJob(BaseModel):
    """导出任务实体"""
    id: int
    title: str
    author: str = ""
    format: ExportFormat = ExportFormat.EPUB

    # 状态
    state: JobState = JobState.DRAFT
    step: ExportStep = ExportStep.BEGIN
    progress: int = 0

    created_at: datetime = Field(default_factory=utcnow)

    # 租约（多进程防重入）
    claimed_by: str | None = None
    lease_expires_at: datetime | None = None

    @property
    def filename(self) -> str:
        return f"{sanitize_title(self.title)}.{self.format.extension}"

    def output_path(self, exports_dir: Path) -> Path:
        """最终产物路径（确定性）"""
        return exports_dir / self.filename

    @property
    def is_draft(self) -> bool:
        return self.state == JobState.DRAFT

    @property
    def is_resumable(self) -> bool:
        return self.state in (JobState.PENDING, JobState.IN_PROGRESS)

    def mark_running(self) -> None:
        """标记为运行中"""
        self.state = JobState.IN_PROGRESS

    def advance(self, step: ExportStep, progress: int | None = None) -> None:
        """推进步骤（只进不退）"""
        if step.position < self.step.position:
            raise ValueError(f"步骤不可回退: {self.step.value} -> {step.value}")
        self.step = step
        if progress is not None:
            self.progress = max(self.progress, progress)

    def mark_completed(self) -> None:
        """标记为完成"""
        self.state = JobState.COMPLETED
        self.step = ExportStep.COMPLETE
        self.progress = 100

    def mark_failed(self) -> None:
        """标记为失败"""
        self.state = JobState.FAILED


class EventLogEntry(BaseModel):
    """事件日志（只追加）"""
    id: int
    job_id: int
    step: ExportStep
    message: str
    timestamp: datetime

    def __str__(self) -> str:
        return (
            f"[{self.timestamp.isoformat()}] export {self.job_id}, "
            f"step {self.step.label}, message {self.message}"
        )
