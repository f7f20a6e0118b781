"""
PanelPress 章节导出系统 - 后端核心模块

模块结构：
- config/      运行期配置与日志
- models/      数据模型定义（导出任务/章节/资源）
- store/       SQLite 任务存储与事件日志
- gateway/     远端内容服务网关（Suwayomi GraphQL）
- assemblers/  归档组装（EPUB / CBZ）
- pipeline/    流水线编排、任务管理与断点续跑
"""

__version__ = "0.1.0"
