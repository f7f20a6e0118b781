"""
流水线阶段定义

职责：
1. 定义各阶段对应的导出步骤与进度区间
2. 按持久化步骤定位续跑起点

测试要点：
- test_stages_cover_export_steps: 阶段与步骤一一对应
- test_remaining_stages: 续跑起点
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import ExportStep


@dataclass(frozen=True)
class PipelineStage:
    """流水线阶段"""
    step: ExportStep
    progress_start: int  # 进度起点（0-100）
    progress_end: int    # 进度终点

    @property
    def name(self) -> str:
        return self.step.value

    def progress_at(self, done: int, total: int) -> int:
        """阶段内按完成比例插值"""
        if total <= 0:
            return self.progress_end
        span = self.progress_end - self.progress_start
        return self.progress_start + (span * done) // total


# 导出流水线各阶段配置（顺序与 EXPORT_STEPS 一致）
EXPORT_STAGES: list[PipelineStage] = [
    PipelineStage(ExportStep.BEGIN, 0, 5),
    PipelineStage(ExportStep.DOWNLOADING_FROM_SOURCE, 5, 40),
    PipelineStage(ExportStep.FETCHING_ASSETS, 40, 80),
    PipelineStage(ExportStep.ASSEMBLING, 80, 99),
    PipelineStage(ExportStep.COMPLETE, 99, 100),
]


def remaining_stages(current: ExportStep) -> list[PipelineStage]:
    """从当前持久化步骤开始（含）的剩余阶段"""
    return EXPORT_STAGES[current.position:]
