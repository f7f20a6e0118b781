"""
模块接口契约 - 定义各模块的抽象接口

设计原则：
1. 模块间通过接口通信，不直接依赖具体实现
2. 每个接口定义清晰的输入输出类型
3. 便于单元测试和mock替换

使用方式：
    from panelpress.interfaces import IContentGateway

    class FakeGateway(IContentGateway):
        async def check_materialized(self, ids): ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models import (
        AssetLocator,
        ContentItem,
        DownloaderState,
        ExportFormat,
        ExportJob,
        FetchedAsset,
    )


# ============================================================================
# 远端内容网关接口
# ============================================================================

class IContentGateway(ABC):
    """远端内容网关接口 - 物化状态/触发下载/进度/资源定位/资源获取

    网关本身不做缓存与重试，编排逻辑全部在执行器中。
    """

    @abstractmethod
    async def check_materialized(self, ids: Iterable[int]) -> dict[int, bool]:
        """
        查询章节是否已在远端落地

        Args:
            ids: 章节ID集合

        Returns:
            {章节ID: 是否已下载}

        Raises:
            RemoteUnavailable: 网络/传输失败
            MissingUpstreamData: 远端无对应数据
        """
        ...

    @abstractmethod
    async def trigger_materialization(self, ids: Iterable[int]) -> None:
        """触发远端下载指定章节"""
        ...

    @abstractmethod
    async def poll_materialization_progress(self) -> DownloaderState:
        """查询远端下载器状态（running / stopped）"""
        ...

    @abstractmethod
    async def list_asset_locations(self, item_id: int) -> list[AssetLocator]:
        """
        获取章节的全部页面地址

        Args:
            item_id: 章节ID

        Returns:
            有序的页面定位列表
        """
        ...

    @abstractmethod
    async def fetch_asset(self, locator: AssetLocator) -> FetchedAsset:
        """下载单个页面，返回字节与 Content-Type"""
        ...

    @abstractmethod
    async def describe_items(self, ids: Iterable[int]) -> list[ContentItem]:
        """
        查询章节元信息（名称/章节号）

        Returns:
            按远端顺序排列的章节列表
        """
        ...


# ============================================================================
# 归档组装接口
# ============================================================================

class IArchiveAssembler(ABC):
    """归档组装器接口"""

    format: ExportFormat

    @abstractmethod
    async def assemble(self, job: ExportJob, items: list[ContentItem]) -> Path:
        """
        把已下载的章节资源组装为最终产物

        Args:
            job: 导出任务
            items: 章节列表（已按远端顺序排列）

        Returns:
            产物路径（由任务标题确定）

        Raises:
            AssemblyIOFailure: 章节目录缺失或读写失败
        """
        ...


# ============================================================================
# 异常定义
# ============================================================================

class PanelPressError(Exception):
    """基础异常"""
    pass


class RemoteUnavailable(PanelPressError):
    """远端服务不可用（网络/传输/协议错误）"""
    pass


class MissingUpstreamData(PanelPressError):
    """远端未返回所请求的数据"""
    pass


class RecordNotFound(PanelPressError):
    """任务或章节关联不存在"""
    pass


class AssemblyIOFailure(PanelPressError):
    """组装过程中的文件读写失败"""
    pass


class InvalidJobState(PanelPressError):
    """任务当前状态不允许该操作"""
    pass


class LeaseLost(PanelPressError):
    """执行途中任务租约被其他执行器接管"""
    pass
