"""
配置层 - 加载运行期配置并初始化日志

职责：
- 加载 config/panelpress.yaml（运行期参数）
- 环境变量覆盖（PANELPRESS_REMOTE__BASE_URL 等）
- 提供类型安全的配置访问接口
"""

from .runtime_config import RuntimeConfig, configure_logging, get_config, reload_config

__all__ = [
    "RuntimeConfig",
    "configure_logging",
    "get_config",
    "reload_config",
]
