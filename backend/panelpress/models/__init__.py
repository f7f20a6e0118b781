"""
数据模型层 - 定义系统核心数据结构

所有模块通过这些模型交互，实现解耦：
- ExportJob: 导出任务状态与生命周期
- EventLogEntry: 任务事件日志
- ContentItem / AssetLocator / FetchedAsset: 远端内容引用
"""

from .content import AssetLocator, ContentItem, DownloaderState, FetchedAsset
from .job import (
    EXPORT_STEPS,
    EventLogEntry,
    ExportFormat,
    ExportJob,
    ExportStep,
    JobState,
    sanitize_title,
)

__all__ = [
    "ExportJob",
    "ExportStep",
    "ExportFormat",
    "JobState",
    "EXPORT_STEPS",
    "EventLogEntry",
    "sanitize_title",
    "ContentItem",
    "AssetLocator",
    "FetchedAsset",
    "DownloaderState",
]
