"""
网关模块 - 远端内容服务访问

子模块：
- suwayomi: GraphQL over HTTP 实现
"""

from .suwayomi import SuwayomiGateway, page_index_from_url

__all__ = [
    "SuwayomiGateway",
    "page_index_from_url",
]
