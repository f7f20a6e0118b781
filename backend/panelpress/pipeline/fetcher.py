"""
资源获取器 - 并发下载章节页面到本地目录

职责：
1. 为每个章节获取页面地址
2. 有界并发下载（信号量限制在途请求数）
3. 写入 <chapters_dir>/<章节ID>/<页码>.<扩展名>（下载前清空章节目录，可重入）
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from ..interfaces import AssemblyIOFailure, IContentGateway, MissingUpstreamData
from ..models import AssetLocator

logger = logging.getLogger(__name__)

ItemDoneCallback = Callable[[int, int], Awaitable[None]]


class AssetFetcher:
    """章节资源获取器"""

    def __init__(self, gateway: IContentGateway, chapters_dir: Path, max_downloads: int = 8):
        if max_downloads < 1:
            raise ValueError("max_downloads must be >= 1")
        self.gateway = gateway
        self.chapters_dir = Path(chapters_dir)
        self.max_downloads = max_downloads

    async def fetch_all(
        self,
        item_ids: Iterable[int],
        on_item_done: ItemDoneCallback | None = None,
    ) -> dict[int, list[Path]]:
        """
        下载全部章节的页面

        Args:
            item_ids: 章节ID
            on_item_done: 每完成一个章节回调 (已完成数, 总数)

        Returns:
            {章节ID: 已写入的文件列表}

        Raises:
            首个失败章节的异常（其余章节仍会跑完）
        """
        ids = sorted(set(item_ids))
        semaphore = asyncio.Semaphore(self.max_downloads)
        done = 0

        async def _one(item_id: int) -> list[Path]:
            nonlocal done
            paths = await self._fetch_item(item_id, semaphore)
            done += 1
            if on_item_done is not None:
                await on_item_done(done, len(ids))
            return paths

        results = await asyncio.gather(*(_one(i) for i in ids), return_exceptions=True)

        fetched: dict[int, list[Path]] = {}
        errors: list[BaseException] = []
        for item_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"章节 {item_id} 下载失败: {result}")
                errors.append(result)
            else:
                fetched[item_id] = result
        if errors:
            raise errors[0]
        return fetched

    async def _fetch_item(self, item_id: int, semaphore: asyncio.Semaphore) -> list[Path]:
        async with semaphore:
            locators = await self.gateway.list_asset_locations(item_id)
        logger.info(f"正在获取章节 {item_id}（{len(locators)} 页）")

        item_dir = self.chapters_dir / str(item_id)
        try:
            # 旧页面（扩展名或页数不同）不能残留到本次产物
            if item_dir.exists():
                shutil.rmtree(item_dir)
            item_dir.mkdir(parents=True)
        except OSError as e:
            raise AssemblyIOFailure(f"Cannot reset {item_dir}: {e}") from e

        results = await asyncio.gather(
            *(self._fetch_page(locator, item_dir, semaphore) for locator in locators),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _fetch_page(
        self, locator: AssetLocator, item_dir: Path, semaphore: asyncio.Semaphore
    ) -> Path:
        async with semaphore:
            asset = await self.gateway.fetch_asset(locator)
        if not asset.is_image:
            raise MissingUpstreamData(
                f"Not an image: {asset.content_type!r} (downloading {locator.url})"
            )
        path = item_dir / f"{locator.page_index}.{asset.extension}"
        try:
            await asyncio.to_thread(path.write_bytes, asset.data)
        except OSError as e:
            raise AssemblyIOFailure(f"Couldn't write {path}: {e}") from e
        return path
