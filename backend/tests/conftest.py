"""
pytest 配置与公共 fixtures

使用方式：
    @pytest.mark.asyncio
    async def test_something(executor, make_job, gateway):
        job = make_job([101, 102])
        await executor.run(job.id)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Generator, Iterable

import pytest

from panelpress.assemblers import build_assemblers
from panelpress.config import RuntimeConfig
from panelpress.config.runtime_config import PollingConfig
from panelpress.interfaces import IContentGateway
from panelpress.models import (
    AssetLocator,
    ContentItem,
    DownloaderState,
    ExportFormat,
    ExportJob,
    FetchedAsset,
)
from panelpress.pipeline import JobManager, StepExecutor
from panelpress.store import EventLog, JobStore


# ============================================================================
# 假网关
# ============================================================================

class FakeGateway(IContentGateway):
    """内存网关：可配置物化状态、轮询序列与页面内容，并记录调用"""

    def __init__(self) -> None:
        self.materialized: dict[int, bool] = {}
        self.poll_states: list[DownloaderState] = [DownloaderState.STOPPED]
        self.page_count: dict[int, int] = {}
        self.default_page_count = 3
        self.content_type = "image/jpeg"
        self.names: dict[int, str] = {}
        self.calls: list[tuple[str, Any]] = []
        self.check_error: Exception | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def args_of(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]

    async def check_materialized(self, ids: Iterable[int]) -> dict[int, bool]:
        ids = sorted(ids)
        self.calls.append(("check_materialized", ids))
        if self.check_error is not None:
            raise self.check_error
        return {i: self.materialized.get(i, True) for i in ids}

    async def trigger_materialization(self, ids: Iterable[int]) -> None:
        ids = sorted(ids)
        self.calls.append(("trigger_materialization", ids))

    async def poll_materialization_progress(self) -> DownloaderState:
        self.calls.append(("poll_materialization_progress", None))
        if len(self.poll_states) > 1:
            return self.poll_states.pop(0)
        return self.poll_states[0]

    async def list_asset_locations(self, item_id: int) -> list[AssetLocator]:
        self.calls.append(("list_asset_locations", item_id))
        pages = self.page_count.get(item_id, self.default_page_count)
        return [
            AssetLocator(
                item_id=item_id,
                url=f"/api/v1/manga/1/chapter/{item_id}/page/{n}",
                page_index=n,
            )
            for n in range(pages)
        ]

    async def fetch_asset(self, locator: AssetLocator) -> FetchedAsset:
        self.calls.append(("fetch_asset", locator.url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.001)
        finally:
            self.in_flight -= 1
        data = f"page-{locator.item_id}-{locator.page_index}".encode()
        return FetchedAsset(data=data, content_type=self.content_type)

    async def describe_items(self, ids: Iterable[int]) -> list[ContentItem]:
        ids = sorted(ids)
        self.calls.append(("describe_items", ids))
        return [ContentItem(id=i, name=self.names.get(i, f"Chapter {i}")) for i in ids]


# ============================================================================
# 配置 Fixtures
# ============================================================================

@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """临时目录"""
    return tmp_path


@pytest.fixture
def runtime_config(temp_dir: Path) -> RuntimeConfig:
    """运行期配置（路径指向临时目录）"""
    config = RuntimeConfig()
    config.storage.base_dir = temp_dir
    config.storage.db_path = temp_dir / "panelpress.db"
    config.storage.chapters_dir = temp_dir / "chapters"
    config.storage.exports_dir = temp_dir / "exports"
    config.ensure_dirs()
    return config


@pytest.fixture
def fast_polling() -> PollingConfig:
    """测试用轮询配置（不等待）"""
    return PollingConfig(interval_sec=0.0, backoff_factor=2.0, max_interval_sec=0.0, max_wait_sec=None)


# ============================================================================
# 存储 Fixtures
# ============================================================================

@pytest.fixture
def store() -> Generator[JobStore, None, None]:
    """内存 SQLite 存储"""
    s = JobStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def event_log(store: JobStore) -> EventLog:
    return EventLog(store)


@pytest.fixture
def make_job(store: JobStore) -> Callable[..., ExportJob]:
    """直接在存储中创建任务"""

    def _make(
        chapters: Iterable[int] = (101, 102),
        fmt: ExportFormat = ExportFormat.EPUB,
        title: str = "Test Book",
        author: str = "Test Author",
    ) -> ExportJob:
        job = store.insert_job(title, author, fmt)
        store.replace_chapters(job.id, chapters)
        return job

    return _make


# ============================================================================
# 流水线 Fixtures
# ============================================================================

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def executor(
    store: JobStore,
    event_log: EventLog,
    gateway: FakeGateway,
    runtime_config: RuntimeConfig,
    fast_polling: PollingConfig,
) -> StepExecutor:
    storage = runtime_config.storage
    return StepExecutor(
        store=store,
        event_log=event_log,
        gateway=gateway,
        assemblers=build_assemblers(storage.chapters_dir, storage.exports_dir, event_log),
        chapters_dir=storage.chapters_dir,
        polling=fast_polling,
        max_downloads=4,
        owner="test-owner",
    )


@pytest.fixture
def job_manager(
    store: JobStore,
    event_log: EventLog,
    runtime_config: RuntimeConfig,
    executor: StepExecutor,
) -> JobManager:
    return JobManager(store, event_log, runtime_config.storage.exports_dir, executor)


# ============================================================================
# 文件 Fixtures
# ============================================================================

@pytest.fixture
def write_pages(runtime_config: RuntimeConfig) -> Callable[[int, list[str]], Path]:
    """在章节目录写入页面文件"""

    def _write(item_id: int, names: list[str]) -> Path:
        chapter_dir = runtime_config.get_chapter_dir(item_id)
        chapter_dir.mkdir(parents=True, exist_ok=True)
        for name in names:
            (chapter_dir / name).write_bytes(f"{item_id}:{name}".encode())
        return chapter_dir

    return _write
