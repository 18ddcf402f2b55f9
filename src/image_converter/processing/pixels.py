"""像素缓冲区与 Pillow / OpenCV 图像之间的转换工具。"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from PIL import Image

from image_converter.core.models import PixelFormat

_SIXTEEN_BIT_MODES = {"I;16", "I;16L", "I;16B", "I;16N", "I"}
_U16_MAX = 65535.0


def from_pil(image: Image.Image) -> np.ndarray:
    """Convert a decoded Pillow frame to an RGBA buffer, keeping 16-bit and float depth."""

    if image.mode in _SIXTEEN_BIT_MODES:
        gray = np.clip(np.asarray(image, dtype=np.int64), 0, 65535).astype(np.uint16)
        return _gray_to_rgba(gray, np.uint16(65535))

    if image.mode == "F":
        gray = np.asarray(image, dtype=np.float32)
        return _gray_to_rgba(gray, np.float32(1.0))

    # 调色板、CMYK、LA 等其他模式统一转为 RGBA
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return np.array(image, dtype=np.uint8)


def to_pil(pixels: np.ndarray) -> Image.Image:
    """8 位 RGBA 缓冲区转为 Pillow 图像。"""

    return Image.fromarray(np.ascontiguousarray(to_pixel_format(pixels, PixelFormat.RGBA8)))


def from_cv(array: np.ndarray) -> np.ndarray:
    """OpenCV 解码结果（BGR/BGRA/灰度）转为 RGBA。"""

    if array.dtype == np.float64:
        array = array.astype(np.float32)
    elif array.dtype not in (np.uint8, np.uint16, np.float32):
        raise ValueError(f"不支持的像素类型: {array.dtype}")

    opaque = _opaque_value(array.dtype)
    if array.ndim == 2:
        return _gray_to_rgba(array, opaque)

    channels = array.shape[2]
    if channels == 1:
        return _gray_to_rgba(array[:, :, 0], opaque)
    if channels == 3:
        rgb = array[:, :, ::-1]
        alpha = np.full(array.shape[:2] + (1,), opaque, dtype=array.dtype)
        return np.ascontiguousarray(np.concatenate([rgb, alpha], axis=2))
    if channels == 4:
        return np.ascontiguousarray(array[:, :, [2, 1, 0, 3]])
    raise ValueError(f"不支持的通道数: {channels}")


def to_cv(pixels: np.ndarray, *, keep_alpha: bool = True) -> np.ndarray:
    """RGBA 缓冲区转为 OpenCV 使用的 BGRA / BGR 排列。"""

    if keep_alpha:
        return np.ascontiguousarray(pixels[:, :, [2, 1, 0, 3]])
    return np.ascontiguousarray(pixels[:, :, [2, 1, 0]])


def to_pixel_format(pixels: np.ndarray, target: PixelFormat) -> np.ndarray:
    """在 8 位、16 位与浮点之间转换像素深度；浮点值按 [0, 1] 截断。"""

    source = PixelFormat.from_dtype(pixels.dtype)
    if source is target:
        return pixels

    if source is PixelFormat.RGBA8:
        normalized = pixels.astype(np.float32) / 255.0
    elif source is PixelFormat.RGBA16:
        normalized = pixels.astype(np.float32) / _U16_MAX
    else:
        normalized = np.clip(np.nan_to_num(pixels, nan=0.0), 0.0, 1.0)

    if target is PixelFormat.RGBA32F:
        return normalized.astype(np.float32)

    if target is PixelFormat.RGBA16 and source is PixelFormat.RGBA8:
        return pixels.astype(np.uint16) * 257

    if target is PixelFormat.RGBA8 and source is PixelFormat.RGBA16:
        return ((pixels.astype(np.uint32) + 128) // 257).astype(np.uint8)

    scale = 255.0 if target is PixelFormat.RGBA8 else _U16_MAX
    return np.rint(normalized * scale).astype(target.dtype)


def flatten_alpha(pixels: np.ndarray, background: Tuple[int, int, int]) -> np.ndarray:
    """使用背景色混合 Alpha 通道，返回完全不透明的同类型缓冲区。"""

    pixel_format = PixelFormat.from_dtype(pixels.dtype)
    alpha_max = float(_opaque_value(pixels.dtype))
    if np.all(pixels[:, :, 3] >= alpha_max):
        return pixels

    working = pixels.astype(np.float32)
    alpha = working[:, :, 3:4] / alpha_max
    bg = np.array(background, dtype=np.float32) / 255.0 * alpha_max
    blended = working[:, :, :3] * alpha + bg * (1.0 - alpha)

    result = np.empty_like(pixels)
    if pixel_format is PixelFormat.RGBA32F:
        result[:, :, :3] = blended
    else:
        result[:, :, :3] = np.rint(blended).astype(pixels.dtype)
    result[:, :, 3] = _opaque_value(pixels.dtype)
    return result


def has_transparency(pixels: np.ndarray) -> bool:
    return bool(np.any(pixels[:, :, 3] < _opaque_value(pixels.dtype)))


def _opaque_value(dtype: np.dtype):
    if dtype == np.uint8:
        return np.uint8(255)
    if dtype == np.uint16:
        return np.uint16(65535)
    return np.float32(1.0)


def _gray_to_rgba(gray: np.ndarray, opaque) -> np.ndarray:
    height, width = gray.shape
    rgba = np.empty((height, width, 4), dtype=gray.dtype)
    rgba[:, :, 0] = gray
    rgba[:, :, 1] = gray
    rgba[:, :, 2] = gray
    rgba[:, :, 3] = opaque
    return rgba
