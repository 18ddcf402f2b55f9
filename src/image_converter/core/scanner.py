"""输入路径展开：glob 模式转为有序、去重的文件列表。"""

from __future__ import annotations

import glob
from pathlib import Path
from typing import Iterable

_GLOB_CHARS = set("*?[")


def expand_inputs(patterns: Iterable[str]) -> list[Path]:
    """按给定顺序展开模式；不含通配符的路径原样保留，由后续阶段报告不存在的文件。"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for pattern in patterns:
        expanded = str(Path(pattern).expanduser())
        if _GLOB_CHARS.intersection(expanded):
            matches = [Path(p) for p in sorted(glob.glob(expanded, recursive=True)) if Path(p).is_file()]
        else:
            matches = [Path(expanded)]

        for candidate in matches:
            if candidate in seen:
                continue
            seen.add(candidate)
            collected.append(candidate)

    return collected
