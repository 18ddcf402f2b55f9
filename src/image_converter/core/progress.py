"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    failed: int = 0
    current: Optional[Path] = None
    message: Optional[str] = None


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
