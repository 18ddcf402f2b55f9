"""Farbfeld 编解码：8 字节魔数、大端宽高，随后是大端 16 位 RGBA。"""

from __future__ import annotations

import struct

import numpy as np

MAGIC = b"farbfeld"
_HEADER = struct.Struct(">8sII")


class FarbfeldError(ValueError):
    """Farbfeld 数据不合法。"""


def decode_farbfeld(data: bytes) -> np.ndarray:
    if len(data) < _HEADER.size:
        raise FarbfeldError("数据长度不足，缺少文件头")

    magic, width, height = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise FarbfeldError("魔数不匹配，不是 farbfeld 文件")
    if width == 0 or height == 0:
        raise FarbfeldError(f"非法尺寸 {width}x{height}")

    expected = width * height * 8
    payload = memoryview(data)[_HEADER.size:]
    if len(payload) < expected:
        raise FarbfeldError(f"像素数据被截断：需要 {expected} 字节，实际 {len(payload)} 字节")

    pixels = np.frombuffer(payload[:expected], dtype=">u2").reshape(height, width, 4)
    return pixels.astype(np.uint16)


def encode_farbfeld(pixels: np.ndarray) -> bytes:
    """``pixels`` 必须为 (height, width, 4) 的 uint16 数组。"""

    if pixels.dtype != np.uint16 or pixels.ndim != 3 or pixels.shape[2] != 4:
        raise FarbfeldError(f"需要 16 位 RGBA 缓冲区，实际为 {pixels.dtype} {pixels.shape}")

    height, width = pixels.shape[:2]
    return _HEADER.pack(MAGIC, width, height) + pixels.astype(">u2").tobytes()
