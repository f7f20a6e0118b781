"""
Suwayomi 网关单元测试（httpx.MockTransport 模拟远端）
"""

from __future__ import annotations

import json

import httpx
import pytest

from panelpress.gateway import SuwayomiGateway, page_index_from_url
from panelpress.interfaces import MissingUpstreamData, RemoteUnavailable
from panelpress.models import AssetLocator, DownloaderState

BASE_URL = "http://suwayomi.test"


def _gateway(handler) -> SuwayomiGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return SuwayomiGateway(BASE_URL, client=client)


def _graphql_handler(responses: dict[str, dict], seen: list | None = None):
    """按查询名称返回固定 JSON"""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/graphql"
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        for name, payload in responses.items():
            if name in body["query"]:
                return httpx.Response(200, json=payload)
        return httpx.Response(404)

    return handler


class TestGraphQLOperations:
    """GraphQL 操作测试"""

    @pytest.mark.asyncio
    async def test_check_materialized(self):
        seen: list = []
        gw = _gateway(_graphql_handler({
            "CheckChaptersDownloaded": {"data": {"chapters": {"nodes": [
                {"id": 101, "isDownloaded": True},
                {"id": 102, "isDownloaded": False},
            ]}}},
        }, seen))
        result = await gw.check_materialized({102, 101})
        assert result == {101: True, 102: False}
        assert seen[0]["variables"] == {"ids": [101, 102]}

    @pytest.mark.asyncio
    async def test_unknown_chapter_is_missing_upstream(self):
        gw = _gateway(_graphql_handler({
            "CheckChaptersDownloaded": {"data": {"chapters": {"nodes": [
                {"id": 101, "isDownloaded": True},
            ]}}},
        }))
        with pytest.raises(MissingUpstreamData):
            await gw.check_materialized([101, 999])

    @pytest.mark.asyncio
    async def test_trigger_materialization(self):
        seen: list = []
        gw = _gateway(_graphql_handler({
            "DownloadChapters": {"data": {"enqueueChapterDownloads": {"downloadStatus": {"state": "STARTED"}}}},
        }, seen))
        await gw.trigger_materialization([5, 3])
        assert "enqueueChapterDownloads" in seen[0]["query"]
        assert seen[0]["variables"] == {"ids": [3, 5]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "remote_state,expected",
        [("STOPPED", DownloaderState.STOPPED), ("STARTED", DownloaderState.RUNNING)],
    )
    async def test_poll_progress(self, remote_state, expected):
        gw = _gateway(_graphql_handler({
            "CheckOnDownloadProgress": {"data": {"downloadStatus": {"state": remote_state}}},
        }))
        assert await gw.poll_materialization_progress() == expected

    @pytest.mark.asyncio
    async def test_list_asset_locations(self):
        gw = _gateway(_graphql_handler({
            "FetchChapterPages": {"data": {"fetchChapterPages": {"pages": [
                "/api/v1/manga/7/chapter/101/page/0",
                "/api/v1/manga/7/chapter/101/page/1",
            ]}}},
        }))
        locators = await gw.list_asset_locations(101)
        assert [loc.page_index for loc in locators] == [0, 1]
        assert all(loc.item_id == 101 for loc in locators)

    @pytest.mark.asyncio
    async def test_describe_items(self):
        gw = _gateway(_graphql_handler({
            "ChaptersByIds": {"data": {"chapters": {"nodes": [
                {"id": 1, "name": "Prologue", "chapterNumber": 1.0},
                {"id": 2, "name": "Second", "chapterNumber": 2.0},
            ]}}},
        }))
        items = await gw.describe_items([2, 1])
        assert [(i.id, i.name) for i in items] == [(1, "Prologue"), (2, "Second")]


class TestErrorMapping:
    """错误映射测试"""

    @pytest.mark.asyncio
    async def test_graphql_errors_are_remote_unavailable(self):
        gw = _gateway(_graphql_handler({
            "CheckOnDownloadProgress": {"errors": [{"message": "boom"}], "data": None},
        }))
        with pytest.raises(RemoteUnavailable, match="boom"):
            await gw.poll_materialization_progress()

    @pytest.mark.asyncio
    async def test_http_error_is_remote_unavailable(self):
        gw = _gateway(lambda request: httpx.Response(500))
        with pytest.raises(RemoteUnavailable):
            await gw.check_materialized([1])

    @pytest.mark.asyncio
    async def test_transport_error_is_remote_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gw = _gateway(handler)
        with pytest.raises(RemoteUnavailable):
            await gw.poll_materialization_progress()

    @pytest.mark.asyncio
    async def test_missing_data_is_missing_upstream(self):
        gw = _gateway(_graphql_handler({"FetchChapterPages": {"data": None}}))
        with pytest.raises(MissingUpstreamData):
            await gw.list_asset_locations(1)


class TestFetchAsset:
    """页面下载测试"""

    @pytest.mark.asyncio
    async def test_fetch_asset(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/manga/7/chapter/101/page/3"
            return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"Content-Type": "image/jpeg"})

        gw = _gateway(handler)
        locator = AssetLocator(item_id=101, url="/api/v1/manga/7/chapter/101/page/3", page_index=3)
        asset = await gw.fetch_asset(locator)
        assert asset.data == b"\xff\xd8jpeg"
        assert asset.content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_fetch_asset_404(self):
        gw = _gateway(lambda request: httpx.Response(404))
        locator = AssetLocator(item_id=1, url="/api/v1/manga/1/chapter/1/page/0", page_index=0)
        with pytest.raises(RemoteUnavailable):
            await gw.fetch_asset(locator)


class TestPageIndex:
    def test_parses_page_number(self):
        assert page_index_from_url("/api/v1/manga/3/chapter/9/page/12?updatedAt=1", 0) == 12

    def test_falls_back_to_position(self):
        assert page_index_from_url("/some/other/url.png", 4) == 4
