"""缩放变换：纯函数，输入图片与 ResizeSpec，返回新图片。"""

from __future__ import annotations

import logging
import math
from typing import Tuple

import numpy as np
from PIL import Image

from image_converter.core.config import AspectPolicy, ResizeFilter, ResizeSpec
from image_converter.core.exceptions import ConversionError, ErrorKind
from image_converter.core.models import Frame, PixelFormat, RasterImage

LOGGER = logging.getLogger(__name__)

_RESAMPLING = getattr(Image, "Resampling", Image)

_FILTERS = {
    ResizeFilter.NEAREST: _RESAMPLING.NEAREST,
    ResizeFilter.BOX: _RESAMPLING.BOX,
    ResizeFilter.TRIANGLE: _RESAMPLING.BILINEAR,
    ResizeFilter.HAMMING: _RESAMPLING.HAMMING,
    ResizeFilter.CATMULLROM: _RESAMPLING.BICUBIC,
    ResizeFilter.LANCZOS: _RESAMPLING.LANCZOS,
}


def apply_resize(image: RasterImage, spec: ResizeSpec) -> RasterImage:
    """对每一帧执行相同的缩放，保留帧顺序、帧延迟与元数据。"""

    target = compute_target_size(image.size, spec)
    if target == image.size:
        LOGGER.debug("目标尺寸与原图一致，跳过缩放: %sx%s", *target)
        return image

    resample = _FILTERS[spec.filter]
    frames = tuple(
        Frame(_resize_pixels(frame.pixels, target, resample), frame.delay_ms) for frame in image.frames
    )
    LOGGER.debug("缩放 %sx%s -> %sx%s (%s)", image.width, image.height, target[0], target[1], spec.filter.value)
    return RasterImage(frames=frames, icc_profile=image.icc_profile, loop=image.loop)


def compute_target_size(size: Tuple[int, int], spec: ResizeSpec) -> Tuple[int, int]:
    """Compute the output dimensions for ``spec``.

    With ``scale`` both sides are multiplied and rounded. With explicit
    dimensions and the ``preserve`` policy the image is fitted into the
    bounding box: the side that limits the fit takes the requested value and
    the other follows the original ratio. ``stretch`` uses the requested sides
    as given and keeps the original value for a side that was not requested.
    Derived sides are rounded half-up and never fall below 1.
    """

    width, height = size

    if spec.scale is not None:
        if not math.isfinite(spec.scale) or spec.scale <= 0:
            raise ConversionError(ErrorKind.INVALID_RESIZE, f"缩放比例必须大于 0: {spec.scale}")
        target_w = _round_half_up(width * spec.scale)
        target_h = _round_half_up(height * spec.scale)
        if target_w == 0 and target_h == 0:
            raise ConversionError(ErrorKind.INVALID_RESIZE, f"缩放比例 {spec.scale} 导致宽高均为 0")
        return max(1, target_w), max(1, target_h)

    if spec.width is None and spec.height is None:
        raise ConversionError(ErrorKind.INVALID_RESIZE, "未指定目标宽高或缩放比例")

    for name, value in (("width", spec.width), ("height", spec.height)):
        if value is not None and value <= 0:
            raise ConversionError(ErrorKind.INVALID_RESIZE, f"目标 {name} 必须大于 0: {value}")

    if spec.aspect is AspectPolicy.STRETCH:
        return spec.width or width, spec.height or height

    if spec.height is None or (spec.width is not None and spec.width / width <= spec.height / height):
        return spec.width, max(1, _round_half_up(height * spec.width / width))
    return max(1, _round_half_up(width * spec.height / height)), spec.height


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _resize_pixels(pixels: np.ndarray, size: Tuple[int, int], resample: int) -> np.ndarray:
    pixel_format = PixelFormat.from_dtype(pixels.dtype)
    if pixel_format is PixelFormat.RGBA8:
        resized = Image.fromarray(np.ascontiguousarray(pixels)).resize(size, resample)
        return np.array(resized, dtype=np.uint8)

    # 16 位与浮点逐通道以 "F" 模式缩放，避免精度损失
    channels = []
    for index in range(4):
        channel = Image.fromarray(np.ascontiguousarray(pixels[:, :, index], dtype=np.float32))
        channels.append(np.asarray(channel.resize(size, resample), dtype=np.float32))
    stacked = np.stack(channels, axis=2)

    if pixel_format is PixelFormat.RGBA16:
        return np.clip(np.rint(stacked), 0, 65535).astype(np.uint16)
    return stacked.astype(np.float32)
