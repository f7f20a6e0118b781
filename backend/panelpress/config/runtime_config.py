"""
运行期配置 - 读取 config/panelpress.yaml

职责：
- 加载远端地址/存储路径/轮询/并发等运行参数
- 提供环境变量覆盖机制（PANELPRESS_ 前缀）
- 类型安全的配置访问
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class RemoteConfig(BaseModel):
    """远端内容服务配置"""

    base_url: str = "http://localhost:4567"
    graphql_path: str = "/api/graphql"
    timeout_sec: float = 30.0


class StorageConfig(BaseModel):
    """存储路径配置"""

    base_dir: Path = Path("data")
    db_path: Path = Path("data/panelpress.db")
    chapters_dir: Path = Path("data/chapters")
    exports_dir: Path = Path("data/exports")


class PollingConfig(BaseModel):
    """下载进度轮询配置"""

    interval_sec: float = 2.0
    backoff_factor: float = 1.5
    max_interval_sec: float = 30.0
    max_wait_sec: float | None = 3600.0  # None 表示不设上限


class ConcurrencyConfig(BaseModel):
    """并发配置"""

    max_downloads: int = 8


class LeaseConfig(BaseModel):
    """任务租约配置"""

    ttl_sec: int = 600


class LoggingConfig(BaseModel):
    """日志配置"""

    log_level: str = "INFO"
    log_to_file: bool = False
    log_file: Path = Path("data/panelpress.log")


class RuntimeConfig(BaseSettings):
    """运行期配置（支持环境变量覆盖）"""

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    lease: LeaseConfig = Field(default_factory=LeaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "PANELPRESS_",
        "env_nested_delimiter": "__",
        "arbitrary_types_allowed": True,
    }

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> RuntimeConfig:
        """从YAML文件加载配置"""
        path = Path(yaml_path)
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        sections = data.get("runtime_options", data)

        config = cls(
            remote=RemoteConfig(**cls._extract(sections, "remote")),
            storage=StorageConfig(**cls._extract(sections, "storage")),
            polling=PollingConfig(**cls._extract(sections, "polling")),
            concurrency=ConcurrencyConfig(**cls._extract(sections, "concurrency")),
            lease=LeaseConfig(**cls._extract(sections, "lease")),
            logging=LoggingConfig(**cls._extract(sections, "logging")),
        )

        config._resolve_paths(base_dir=path.parent)
        return config

    @staticmethod
    def _extract(data: dict[str, Any], key: str) -> dict[str, Any]:
        """提取并展平配置（支持 {default: x} 写法）"""
        section = data.get(key) or {}
        result = {}
        for k, v in section.items():
            if isinstance(v, dict) and "default" in v:
                result[k] = v["default"]
            elif not isinstance(v, dict):
                result[k] = v
        return result

    def _resolve_paths(self, base_dir: Path) -> None:
        """解析相对路径配置为绝对路径（基于配置文件所在目录）"""
        storage = self.storage
        for name in ("base_dir", "db_path", "chapters_dir", "exports_dir"):
            value: Path = getattr(storage, name)
            if not value.is_absolute():
                setattr(storage, name, (base_dir / value).resolve())
        if not self.logging.log_file.is_absolute():
            self.logging.log_file = (base_dir / self.logging.log_file).resolve()

    def get_chapter_dir(self, chapter_id: int) -> Path:
        """获取章节资源目录"""
        return self.storage.chapters_dir / str(chapter_id)

    def ensure_dirs(self) -> None:
        """确保必要目录存在"""
        self.storage.base_dir.mkdir(parents=True, exist_ok=True)
        self.storage.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage.chapters_dir.mkdir(parents=True, exist_ok=True)
        self.storage.exports_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(config: RuntimeConfig) -> None:
    """按配置初始化根日志"""
    level = getattr(logging, config.logging.log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.logging.log_to_file:
        config.logging.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
        force=True,
    )


# 全局配置实例
_config: RuntimeConfig | None = None

DEFAULT_CONFIG_PATH = Path("config/panelpress.yaml")


def get_config() -> RuntimeConfig:
    """获取全局配置（惰性加载）"""
    global _config
    if _config is None:
        _config = RuntimeConfig.from_yaml(DEFAULT_CONFIG_PATH)
    return _config


def reload_config(yaml_path: str | Path | None = None) -> RuntimeConfig:
    """重新加载配置"""
    global _config
    path = yaml_path or DEFAULT_CONFIG_PATH
    _config = RuntimeConfig.from_yaml(path)
    return _config
