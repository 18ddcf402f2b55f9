"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np

from image_converter.core.config import EncodeOptions, ResizeSpec
from image_converter.core.exceptions import ErrorKind
from image_converter.core.formats import Format


class PixelFormat(str, Enum):
    """像素缓冲区的存储格式，统一为 RGBA 四通道。"""

    RGBA8 = "rgba8"
    RGBA16 = "rgba16"
    RGBA32F = "rgba32f"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_DTYPES[self])

    @classmethod
    def from_dtype(cls, dtype: np.dtype) -> "PixelFormat":
        for pixel_format, name in _DTYPES.items():
            if np.dtype(name) == dtype:
                return pixel_format
        raise ValueError(f"不支持的像素类型: {dtype}")


_DTYPES = {
    PixelFormat.RGBA8: "uint8",
    PixelFormat.RGBA16: "uint16",
    PixelFormat.RGBA32F: "float32",
}


@dataclass(frozen=True, slots=True, eq=False)
class Frame:
    """单帧像素，``pixels`` 形状为 (height, width, 4)。"""

    pixels: np.ndarray
    delay_ms: Optional[int] = None

    @property
    def size(self) -> Tuple[int, int]:
        height, width = self.pixels.shape[:2]
        return width, height


@dataclass(frozen=True, slots=True, eq=False)
class RasterImage:
    """解码后的图片：至少一帧，所有帧尺寸与像素格式一致。"""

    frames: Tuple[Frame, ...]
    icc_profile: Optional[bytes] = None
    loop: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.frames:
            raise ValueError("图片至少需要一帧")

        first = self.frames[0].pixels
        if first.ndim != 3 or first.shape[2] != 4:
            raise ValueError(f"像素缓冲区必须为 (height, width, 4)，实际为 {first.shape}")
        if first.shape[0] <= 0 or first.shape[1] <= 0:
            raise ValueError("图片宽高必须大于 0")
        PixelFormat.from_dtype(first.dtype)

        for index, frame in enumerate(self.frames[1:], start=1):
            if frame.pixels.shape != first.shape or frame.pixels.dtype != first.dtype:
                raise ValueError(f"第 {index} 帧的尺寸或像素格式与首帧不一致")

    @classmethod
    def single(cls, pixels: np.ndarray, *, icc_profile: Optional[bytes] = None) -> "RasterImage":
        return cls(frames=(Frame(pixels),), icc_profile=icc_profile)

    @property
    def width(self) -> int:
        return int(self.frames[0].pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.frames[0].pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def pixel_format(self) -> PixelFormat:
        return PixelFormat.from_dtype(self.frames[0].pixels.dtype)

    @property
    def frame_count(self) -> int:
        return len(self.frames)


class Stage(str, Enum):
    """单个任务的执行阶段。"""

    READ = "read"
    DECODE = "decode"
    RESIZE = "resize"
    ENCODE = "encode"
    WRITE = "write"
    WORKER = "worker"
    DISPATCH = "dispatch"


@dataclass(frozen=True, slots=True)
class ConversionJob:
    """一次输入文件到输出文件的转换请求，由 planner 构造后不可变。"""

    input_path: Path
    input_format: Format
    output_path: Path
    output_format: Format
    resize: Optional[ResizeSpec] = None
    encode: EncodeOptions = field(default_factory=EncodeOptions)


@dataclass(frozen=True, slots=True)
class JobResult:
    """记录单个任务的处理结果（用于报告/日志）。"""

    job: ConversionJob
    bytes_written: int = 0
    frames_dropped: int = 0
    stage: Optional[Stage] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, job: ConversionJob, bytes_written: int, frames_dropped: int = 0) -> "JobResult":
        return cls(job=job, bytes_written=bytes_written, frames_dropped=frames_dropped)

    @classmethod
    def failure(cls, job: ConversionJob, stage: Stage, kind: ErrorKind, message: str) -> "JobResult":
        return cls(job=job, stage=stage, error_kind=kind, message=message)

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None


@dataclass(frozen=True, slots=True)
class BatchReport:
    """一次调用的最终结果，顺序与规划的任务顺序一致。"""

    results: Tuple[JobResult, ...]

    @classmethod
    def from_results(cls, results: Sequence[JobResult]) -> "BatchReport":
        return cls(results=tuple(results))

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def is_partial(self) -> bool:
        """部分成功：既有成功也有失败。"""

        return self.succeeded > 0 and self.failed > 0

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
