"""日志配置。"""

from __future__ import annotations

import logging


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置；工作进程名称会出现在每条日志中。"""

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s",
    )
    # Pillow 的插件调试日志过于冗长
    logging.getLogger("PIL").setLevel(max(level, logging.INFO))
