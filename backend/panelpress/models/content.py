"""
远端内容模型 - 章节、页面资源定位与下载结果

这些对象由网关产生，核心流程只持有其ID与已下载的本地字节。
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class DownloaderState(str, Enum):
    """远端下载器状态"""
    RUNNING = "running"
    STOPPED = "stopped"


class ContentItem(BaseModel):
    """内容条目（章节）"""
    id: int
    name: str = ""
    chapter_number: float | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"Chapter {self.id}"


class AssetLocator(BaseModel):
    """单个资源（页面）的定位信息"""
    item_id: int
    url: str
    page_index: int


class FetchedAsset(BaseModel):
    """已获取的资源字节"""
    data: bytes
    content_type: str

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def extension(self) -> str:
        """由 Content-Type 推断扩展名（image/jpeg -> jpeg）"""
        subtype = self.content_type.split(";", 1)[0].split("/")[-1].strip()
        return subtype or "bin"
