"""
存储模块 - 任务/章节关联/事件日志的 SQLite 持久化

子模块：
- db: 任务存储与租约
- event_log: 只追加事件日志
"""

from .db import JobStore
from .event_log import EventLog

__all__ = [
    "JobStore",
    "EventLog",
]
