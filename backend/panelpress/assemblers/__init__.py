"""
组装模块 - 把已下载章节打包为最终产物

子模块：
- base: 原子写入与页面排序
- epub: 文档归档
- cbz: 图片归档
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ..models import ExportFormat
from .base import BaseAssembler, list_pages
from .cbz import CbzAssembler
from .epub import EpubAssembler

if TYPE_CHECKING:
    from ..store import EventLog

_ASSEMBLERS: dict[ExportFormat, type[BaseAssembler]] = {
    ExportFormat.EPUB: EpubAssembler,
    ExportFormat.CBZ: CbzAssembler,
}


def build_assemblers(
    chapters_dir: Path,
    exports_dir: Path,
    event_log: EventLog | None = None,
) -> dict[ExportFormat, BaseAssembler]:
    """按格式构建组装器表"""
    return {
        fmt: cls(chapters_dir, exports_dir, event_log)
        for fmt, cls in _ASSEMBLERS.items()
    }


__all__ = [
    "BaseAssembler",
    "EpubAssembler",
    "CbzAssembler",
    "build_assemblers",
    "list_pages",
]
