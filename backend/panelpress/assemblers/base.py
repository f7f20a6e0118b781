"""
组装器基类 - 产物路径、原子写入与章节目录读取

约束：
- 产物先写入同目录临时文件，成功后原子替换到确定性路径
- 任何失败都删除临时文件，确定性路径上不留半成品
- 文件系统错误统一转换为 AssemblyIOFailure
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from ..interfaces import AssemblyIOFailure, IArchiveAssembler

if TYPE_CHECKING:
    from ..models import ContentItem, ExportJob
    from ..store import EventLog

logger = logging.getLogger(__name__)


def list_pages(chapter_dir: Path) -> list[Path]:
    """列出章节目录下的页面文件，按文件名数值升序"""
    if not chapter_dir.is_dir():
        raise AssemblyIOFailure(f"Chapter directory missing: {chapter_dir}")
    try:
        files = [p for p in chapter_dir.iterdir() if p.is_file()]
    except OSError as e:
        raise AssemblyIOFailure(f"Cannot read chapter directory {chapter_dir}: {e}") from e

    def _key(path: Path) -> int:
        try:
            return int(path.stem)
        except ValueError as e:
            raise AssemblyIOFailure(f"Unexpected page file name: {path.name}") from e

    return sorted(files, key=_key)


class BaseAssembler(IArchiveAssembler):
    """组装器公共逻辑"""

    def __init__(
        self,
        chapters_dir: Path,
        exports_dir: Path,
        event_log: EventLog | None = None,
    ):
        self.chapters_dir = Path(chapters_dir)
        self.exports_dir = Path(exports_dir)
        self.event_log = event_log

    def chapter_dir(self, item_id: int) -> Path:
        return self.chapters_dir / str(item_id)

    async def assemble(self, job: ExportJob, items: list[ContentItem]) -> Path:
        """组装产物（重新组装时从零重建）"""
        output_path = job.output_path(self.exports_dir)
        notes = await asyncio.to_thread(self._write_atomically, job, items, output_path)
        if self.event_log is not None:
            for note in notes:
                self.event_log.append(job.id, job.step, note)
        logger.info(f"[{job.id}] 产物已生成: {output_path}")
        return output_path

    def _write_atomically(
        self, job: ExportJob, items: list[ContentItem], output_path: Path
    ) -> list[str]:
        tmp_path = output_path.with_name(f".{output_path.name}.partial")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            notes = self.write_archive(job, items, tmp_path)
            os.replace(tmp_path, output_path)
            return notes
        except OSError as e:
            raise AssemblyIOFailure(f"Failed to write {output_path.name}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    @abstractmethod
    def write_archive(
        self, job: ExportJob, items: list[ContentItem], target: Path
    ) -> list[str]:
        """
        写出归档到 target

        Returns:
            需要记入事件日志的说明行
        """
        ...
