"""
Suwayomi 网关 - 基于 GraphQL（JSON over HTTP）的远端内容服务实现

职责：
1. 查询章节是否已在远端落地
2. 触发远端下载并查询下载器状态
3. 获取章节页面地址、下载页面字节
4. 查询章节元信息

测试要点：
- test_check_materialized: 物化状态映射
- test_transport_error_is_remote_unavailable: 传输错误
- test_missing_data_is_missing_upstream: 缺失数据
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

import httpx

from ..config import RuntimeConfig
from ..interfaces import IContentGateway, MissingUpstreamData, RemoteUnavailable
from ..models import AssetLocator, ContentItem, DownloaderState, FetchedAsset

logger = logging.getLogger(__name__)

# 页面地址形如 /api/v1/manga/12/chapter/3/page/7
PAGE_URL_RE = re.compile(r"/api/v1/manga/\d+/chapter/\d+/page/(\d+)")

CHECK_CHAPTERS_DOWNLOADED = """
query CheckChaptersDownloaded($ids: [Int!]) {
  chapters(filter: {id: {in: $ids}}) {
    nodes { id isDownloaded }
  }
}
"""

DOWNLOAD_CHAPTERS = """
mutation DownloadChapters($ids: [Int!]!) {
  enqueueChapterDownloads(input: {ids: $ids}) {
    downloadStatus { state }
  }
}
"""

CHECK_ON_DOWNLOAD_PROGRESS = """
query CheckOnDownloadProgress {
  downloadStatus { state }
}
"""

FETCH_CHAPTER_PAGES = """
mutation FetchChapterPages($id: Int!) {
  fetchChapterPages(input: {chapterId: $id}) {
    pages
  }
}
"""

CHAPTERS_BY_IDS = """
query ChaptersByIds($ids: [Int!]) {
  chapters(filter: {id: {in: $ids}}) {
    nodes { id name chapterNumber }
  }
}
"""


def page_index_from_url(url: str, fallback: int) -> int:
    """从页面地址中解析页码，无法解析时使用列表位置"""
    match = PAGE_URL_RE.search(url)
    if match:
        return int(match.group(1))
    return fallback


class SuwayomiGateway(IContentGateway):
    """Suwayomi GraphQL 网关实现"""

    def __init__(
        self,
        base_url: str,
        graphql_path: str = "/api/graphql",
        timeout_sec: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.graphql_path = graphql_path
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_sec)
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> SuwayomiGateway:
        return cls(
            base_url=config.remote.base_url,
            graphql_path=config.remote.graphql_path,
            timeout_sec=config.remote.timeout_sec,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SuwayomiGateway:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # === 网关操作 ===

    async def check_materialized(self, ids: Iterable[int]) -> dict[int, bool]:
        wanted = sorted(set(ids))
        data = await self._graphql(CHECK_CHAPTERS_DOWNLOADED, {"ids": wanted})
        nodes = self._nodes(data, "chapters")
        status = {int(n["id"]): bool(n.get("isDownloaded")) for n in nodes}
        missing = [cid for cid in wanted if cid not in status]
        if missing:
            raise MissingUpstreamData(f"Chapters not found upstream: {missing}")
        return status

    async def trigger_materialization(self, ids: Iterable[int]) -> None:
        wanted = sorted(set(ids))
        await self._graphql(DOWNLOAD_CHAPTERS, {"ids": wanted})
        logger.info(f"已请求远端下载章节: {wanted}")

    async def poll_materialization_progress(self) -> DownloaderState:
        data = await self._graphql(CHECK_ON_DOWNLOAD_PROGRESS, {})
        try:
            state = str(data["downloadStatus"]["state"])
        except (KeyError, TypeError) as e:
            raise MissingUpstreamData("Missing downloadStatus in response") from e
        if state.upper() == "STOPPED":
            return DownloaderState.STOPPED
        return DownloaderState.RUNNING

    async def list_asset_locations(self, item_id: int) -> list[AssetLocator]:
        data = await self._graphql(FETCH_CHAPTER_PAGES, {"id": item_id})
        try:
            pages = data["fetchChapterPages"]["pages"] or []
        except (KeyError, TypeError) as e:
            raise MissingUpstreamData(f"No pages for chapter {item_id}") from e
        return [
            AssetLocator(item_id=item_id, url=url, page_index=page_index_from_url(url, i))
            for i, url in enumerate(pages)
        ]

    async def fetch_asset(self, locator: AssetLocator) -> FetchedAsset:
        try:
            response = await self._client.get(locator.url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"Failed to fetch {locator.url}: {e}") from e
        content_type = response.headers.get("Content-Type", "application/octet-stream")
        return FetchedAsset(data=response.content, content_type=content_type)

    async def describe_items(self, ids: Iterable[int]) -> list[ContentItem]:
        wanted = sorted(set(ids))
        data = await self._graphql(CHAPTERS_BY_IDS, {"ids": wanted})
        nodes = self._nodes(data, "chapters")
        items = [
            ContentItem(
                id=int(n["id"]),
                name=n.get("name") or "",
                chapter_number=n.get("chapterNumber"),
            )
            for n in nodes
        ]
        found = {item.id for item in items}
        missing = [cid for cid in wanted if cid not in found]
        if missing:
            raise MissingUpstreamData(f"Chapters not found upstream: {missing}")
        return items

    # === 内部工具 ===

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """发送 GraphQL 请求并返回 data 段"""
        try:
            response = await self._client.post(
                self.graphql_path,
                json={"query": query, "variables": variables},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"GraphQL request failed: {e}") from e
        except ValueError as e:
            raise RemoteUnavailable(f"Invalid JSON from remote: {e}") from e

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            raise RemoteUnavailable(f"GraphQL errors: {messages}")

        data = payload.get("data")
        if data is None:
            raise MissingUpstreamData("Missing response data")
        return data

    @staticmethod
    def _nodes(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
        try:
            return list(data[key]["nodes"])
        except (KeyError, TypeError) as e:
            raise MissingUpstreamData(f"Missing {key}.nodes in response") from e
