"""
EPUB 组装器 - 文档归档（可重排）

职责：
1. 每个章节生成一个 XHTML 分节（标题 + 按页码排序的图片）
2. 图片作为资源打入包内 images/<章节ID>/
3. 包结构（OPF/NCX/nav/container）交给 ebooklib 生成

测试要点：
- test_two_sections_sorted_numerically: 分节与页序
- test_metadata_title_author: 元数据
- test_missing_chapter_dir_leaves_no_file: 缺目录硬失败
"""

from __future__ import annotations

import html
import mimetypes
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from ebooklib import epub

from ..interfaces import AssemblyIOFailure
from ..models import ExportFormat
from .base import BaseAssembler, list_pages

if TYPE_CHECKING:
    from ..models import ContentItem, ExportJob

LANGUAGE = "en"


def _media_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or f"image/{path.suffix.lstrip('.').lower()}"


class _Section:
    """单个章节分节"""

    def __init__(self, index: int, item: ContentItem, pages: list[Path]):
        self.index = index
        self.item = item
        self.pages = pages
        self.uid = f"chapter_{index:04d}"
        self.file_name = f"text/{self.uid}.xhtml"

    def image_name(self, page: Path) -> str:
        return f"images/{self.item.id}/{page.name}"

    def body(self) -> str:
        title = html.escape(self.item.display_name)
        lines = [f"<h1>{title}</h1>"]
        for page in self.pages:
            lines.append(f'<img src="../{self.image_name(page)}" alt="{page.stem}"/>')
        return "\n".join(lines)

    def to_document(self) -> epub.EpubHtml:
        doc = epub.EpubHtml(
            uid=self.uid,
            title=self.item.display_name,
            file_name=self.file_name,
            lang=LANGUAGE,
        )
        doc.content = self.body()
        return doc

    def images(self) -> list[epub.EpubImage]:
        return [
            epub.EpubImage(
                uid=f"img_{self.item.id}_{n}",
                file_name=self.image_name(page),
                media_type=_media_type(page),
                content=page.read_bytes(),
            )
            for n, page in enumerate(self.pages)
        ]


class EpubAssembler(BaseAssembler):
    """EPUB 组装器"""

    format = ExportFormat.EPUB

    def write_archive(
        self, job: ExportJob, items: list[ContentItem], target: Path
    ) -> list[str]:
        # 先读齐所有章节目录，缺失即失败
        sections = [
            _Section(i + 1, item, list_pages(self.chapter_dir(item.id)))
            for i, item in enumerate(items)
        ]

        book = epub.EpubBook()
        book.set_identifier(
            f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, f'panelpress:{job.id}:{job.title}')}"
        )
        book.set_title(job.title)
        book.set_language(LANGUAGE)
        if job.author:
            book.add_author(job.author)

        notes: list[str] = []
        documents = []
        for section in sections:
            doc = section.to_document()
            book.add_item(doc)
            for image in section.images():
                book.add_item(image)
            documents.append(doc)
            notes.append(f"Added chapter {section.item.id} to epub")

        book.toc = documents
        book.spine = documents
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())

        epub.write_epub(str(target), book)
        # write_epub 吞掉写入错误，以产物是否存在为准
        if not target.is_file():
            raise AssemblyIOFailure(f"EPUB writer produced no file at {target}")
        return notes
