"""转换任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from image_converter.core.exceptions import InvalidConfigurationError
from image_converter.core.formats import Format
from image_converter.utils.colors import parse_hex_color

CONFLICT_STRATEGIES = ("overwrite", "rename")


class AspectPolicy(str, Enum):
    PRESERVE = "preserve"
    STRETCH = "stretch"


class ResizeFilter(str, Enum):
    """重采样核，与 Pillow 的 Resampling 一一对应。"""

    NEAREST = "nearest"
    BOX = "box"
    TRIANGLE = "triangle"
    HAMMING = "hamming"
    CATMULLROM = "catmullrom"
    LANCZOS = "lanczos"


@dataclass(frozen=True, slots=True)
class ResizeSpec:
    """缩放目标：绝对宽高或比例因子二选一。"""

    width: Optional[int] = None
    height: Optional[int] = None
    scale: Optional[float] = None
    aspect: AspectPolicy = AspectPolicy.PRESERVE
    filter: ResizeFilter = ResizeFilter.LANCZOS

    def __post_init__(self) -> None:
        if self.scale is not None and (self.width is not None or self.height is not None):
            raise InvalidConfigurationError("scale 不能与 width/height 同时指定")


@dataclass(frozen=True, slots=True)
class EncodeOptions:
    """编码器参数。"""

    quality: int = 90
    background_color: str = "#FFFFFF"
    lossless: bool = False

    def __post_init__(self) -> None:
        if not 1 <= self.quality <= 100:
            raise InvalidConfigurationError(f"quality 必须在 1~100 之间: {self.quality}")
        parse_hex_color(self.background_color)


@dataclass(slots=True)
class ConversionOptions:
    """单次调用（单文件或批处理）的配置集合。"""

    output: Path
    input_format: Optional[Format] = None
    output_format: Optional[Format] = None
    resize: Optional[ResizeSpec] = None
    batch: bool = False
    encode: EncodeOptions = field(default_factory=EncodeOptions)
    conflict_strategy: str = "overwrite"  # overwrite | rename
    max_workers: Optional[int] = None
    report_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {self.conflict_strategy}")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigurationError("max_workers 必须大于 0")
