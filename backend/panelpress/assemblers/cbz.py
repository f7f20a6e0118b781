"""
CBZ 组装器 - 图片归档

结构：
- metadata.json            全局元数据（title/author）
- <章节ID>/info.json        章节描述（id/title）
- <章节ID>/...              章节目录原样拷贝（图片 ZIP_STORED，不再压缩）
"""

from __future__ import annotations

import json
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING

from ..interfaces import AssemblyIOFailure
from ..models import ExportFormat
from .base import BaseAssembler

if TYPE_CHECKING:
    from ..models import ContentItem, ExportJob


class CbzAssembler(BaseAssembler):
    """CBZ 组装器"""

    format = ExportFormat.CBZ

    def write_archive(
        self, job: ExportJob, items: list[ContentItem], target: Path
    ) -> list[str]:
        for item in items:
            if not self.chapter_dir(item.id).is_dir():
                raise AssemblyIOFailure(f"Chapter directory missing: {self.chapter_dir(item.id)}")

        notes: list[str] = []
        with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
            metadata = {"title": job.title, "author": job.author}
            zf.writestr("metadata.json", json.dumps(metadata, ensure_ascii=False))

            for item in items:
                info = {"id": item.id, "title": item.display_name}
                zf.writestr(f"{item.id}/info.json", json.dumps(info, ensure_ascii=False))
                self._add_directory(zf, self.chapter_dir(item.id), str(item.id))
                notes.append(f"Added chapter {item.id} to cbz")

        return notes

    @staticmethod
    def _add_directory(zf: zipfile.ZipFile, directory: Path, prefix: str) -> None:
        """递归拷贝目录（排序以保证产物稳定）"""
        for file in sorted(directory.rglob("*")):
            if file.is_file():
                arcname = f"{prefix}/{file.relative_to(directory).as_posix()}"
                zf.write(file, arcname, compress_type=zipfile.ZIP_STORED)
