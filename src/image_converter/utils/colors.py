"""颜色工具函数。"""

from __future__ import annotations

import re
from typing import Tuple

from image_converter.core.exceptions import InvalidConfigurationError

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """将 HEX 字符串（#RGB 或 #RRGGBB）解析为 RGB 三元组。"""

    match = HEX_COLOR_RE.match((value or "").strip())
    if not match:
        raise InvalidConfigurationError(f"无法解析颜色值: {value!r}")

    hex_value = match.group(1)
    if len(hex_value) == 3:
        hex_value = "".join(ch * 2 for ch in hex_value)
    return tuple(int(hex_value[i : i + 2], 16) for i in (0, 2, 4))  # type: ignore[return-value]
