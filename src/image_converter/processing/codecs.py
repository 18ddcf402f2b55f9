"""编解码适配层：所有格式都经由 decode/encode 两个入口访问。

每个 Format 在 ``_CODECS`` 中对应一对函数，这里是唯一按格式分派的位置。
Pillow 负责大部分容器格式；OpenCV 负责 Radiance HDR、OpenEXR 以及 16 位
PNG/TIFF；QOI 使用 ``qoi`` 库；Farbfeld 由本项目自行实现。
"""

from __future__ import annotations

import io
import logging
import os
from functools import partial
from typing import Callable, Mapping, NamedTuple, Optional

os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")

import cv2  # noqa: E402
import numpy as np  # noqa: E402
import qoi  # noqa: E402
from PIL import Image, ImageSequence  # noqa: E402

from image_converter.core.config import EncodeOptions  # noqa: E402
from image_converter.core.exceptions import ConversionError, ErrorKind  # noqa: E402
from image_converter.core.formats import Format, capabilities_of  # noqa: E402
from image_converter.core.models import Frame, PixelFormat, RasterImage  # noqa: E402
from image_converter.processing.farbfeld import FarbfeldError, decode_farbfeld, encode_farbfeld  # noqa: E402
from image_converter.processing.pixels import (  # noqa: E402
    flatten_alpha,
    from_cv,
    from_pil,
    has_transparency,
    to_cv,
    to_pil,
    to_pixel_format,
)
from image_converter.utils.colors import parse_hex_color  # noqa: E402

LOGGER = logging.getLogger(__name__)

ICO_MAX_SIZE = 256

_PIL_NAMES = {
    Format.AVIF: "AVIF",
    Format.BMP: "BMP",
    Format.DDS: "DDS",
    Format.GIF: "GIF",
    Format.ICO: "ICO",
    Format.JPEG: "JPEG",
    Format.PNG: "PNG",
    Format.PNM: "PPM",
    Format.TGA: "TGA",
    Format.TIFF: "TIFF",
    Format.WEBP: "WEBP",
}


class _Codec(NamedTuple):
    decode: Callable[[bytes], RasterImage]
    encode: Callable[[RasterImage, EncodeOptions], bytes]


def decode(fmt: Format, data: bytes) -> RasterImage:
    """按指定格式解码字节流，失败时抛出 DECODE_FAILED。"""

    codec = _CODECS[fmt]
    try:
        return codec.decode(data)
    except ConversionError:
        raise
    except Exception as exc:  # noqa: BLE001
        LOGGER.debug("%s 解码失败: %r", fmt.value, exc)
        raise ConversionError(ErrorKind.DECODE_FAILED, f"{fmt.value} 解码失败 => {exc}") from exc


def encode(fmt: Format, image: RasterImage, options: Optional[EncodeOptions] = None) -> bytes:
    """按指定格式编码图片；单帧格式只写入第 0 帧。"""

    codec = _CODECS[fmt]
    try:
        return codec.encode(image, options or EncodeOptions())
    except ConversionError:
        raise
    except Exception as exc:  # noqa: BLE001
        LOGGER.debug("%s 编码失败: %r", fmt.value, exc)
        raise ConversionError(ErrorKind.ENCODE_FAILED, f"{fmt.value} 编码失败 => {exc}") from exc


# ---------------------------------------------------------------------------
# Pillow
# ---------------------------------------------------------------------------


def _require_pillow_plugin(name: str, registry: Mapping, kind: ErrorKind) -> None:
    Image.init()
    if name not in registry:
        raise ConversionError(kind, f"当前 Pillow 未启用 {name} 支持")


def _decode_pillow(fmt: Format, data: bytes) -> RasterImage:
    name = _PIL_NAMES[fmt]
    _require_pillow_plugin(name, Image.OPEN, ErrorKind.DECODE_FAILED)

    with Image.open(io.BytesIO(data), formats=[name]) as img:
        if getattr(img, "n_frames", 1) == 1 and _needs_wide_decoder(fmt, img, data):
            LOGGER.debug("%s 为 16 位彩色图像，改用 OpenCV 解码", fmt.value)
            return _decode_opencv(data)

        icc_profile = img.info.get("icc_profile")
        loop = img.info.get("loop")
        multi_frame = capabilities_of(fmt).is_multi_frame

        frames: list[Frame] = []
        for page in ImageSequence.Iterator(img):
            pixels = from_pil(page)
            duration = page.info.get("duration")
            frames.append(Frame(pixels, int(duration) if duration is not None else None))
            if not multi_frame:
                break

    return _assemble(frames, icc_profile=icc_profile or None, loop=loop if len(frames) > 1 else None)


def _needs_wide_decoder(fmt: Format, img: Image.Image, data: bytes) -> bool:
    """Pillow 会把 16 位彩色 PNG/TIFF 截断为 8 位，这类文件交给 OpenCV。"""

    if fmt is Format.PNG:
        # IHDR: 位深在偏移 24，颜色类型在偏移 25
        return len(data) > 25 and data[24] == 16 and data[25] in (2, 4, 6)
    if fmt is Format.TIFF and img.mode in ("RGB", "RGBA", "LA"):
        bits = img.tag_v2.get(258, ())
        if isinstance(bits, int):
            bits = (bits,)
        return 16 in tuple(bits)
    return False


def _assemble(frames: list[Frame], *, icc_profile: Optional[bytes], loop: Optional[int]) -> RasterImage:
    first = frames[0].pixels
    target = PixelFormat.from_dtype(first.dtype)
    normalized: list[Frame] = []
    for index, frame in enumerate(frames):
        if frame.pixels.shape[:2] != first.shape[:2]:
            raise ConversionError(
                ErrorKind.DECODE_FAILED,
                f"第 {index} 帧尺寸 {frame.size} 与首帧 {frames[0].size} 不一致",
            )
        normalized.append(Frame(to_pixel_format(frame.pixels, target), frame.delay_ms))
    return RasterImage(frames=tuple(normalized), icc_profile=icc_profile, loop=loop)


def _save_pillow(name: str, frames: list[Image.Image], **params) -> bytes:
    _require_pillow_plugin(name, Image.SAVE, ErrorKind.ENCODE_FAILED)

    first, *rest = frames
    if rest:
        params.update(save_all=True, append_images=rest)

    buffer = io.BytesIO()
    first.save(buffer, format=name, **params)
    return buffer.getvalue()


def _opaque_or_rgba(pixels: np.ndarray) -> Image.Image:
    """不含透明像素时以 RGB 写出，部分格式不能可靠地保存 Alpha。"""

    pil_image = to_pil(pixels)
    if has_transparency(pixels):
        return pil_image
    return pil_image.convert("RGB")


def _flattened(pixels: np.ndarray, options: EncodeOptions) -> Image.Image:
    background = parse_hex_color(options.background_color)
    if has_transparency(pixels):
        LOGGER.debug("目标格式不支持透明度，使用背景色 %s 混合", options.background_color)
    return to_pil(flatten_alpha(to_pixel_format(pixels, PixelFormat.RGBA8), background)).convert("RGB")


def _animation_params(image: RasterImage) -> dict:
    if image.frame_count == 1:
        return {}
    durations = [frame.delay_ms if frame.delay_ms is not None else 100 for frame in image.frames]
    params: dict = {"duration": durations}
    # 源图未指定循环次数时不写入 loop
    if image.loop is not None:
        params["loop"] = image.loop
    return params


def _icc_params(image: RasterImage) -> dict:
    return {"icc_profile": image.icc_profile} if image.icc_profile else {}


def _encode_png(image: RasterImage, options: EncodeOptions) -> bytes:
    if image.frame_count == 1 and image.pixel_format is not PixelFormat.RGBA8:
        return _encode_opencv(".png", to_cv(to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA16)))

    frames = [to_pil(frame.pixels) for frame in image.frames]
    return _save_pillow("PNG", frames, **_animation_params(image), **_icc_params(image))


def _encode_tiff(image: RasterImage, options: EncodeOptions) -> bytes:
    if image.frame_count == 1 and image.pixel_format is not PixelFormat.RGBA8:
        return _encode_opencv(".tiff", to_cv(to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA16)))

    frames = [to_pil(frame.pixels) for frame in image.frames]
    return _save_pillow("TIFF", frames, **_icc_params(image))


def _encode_gif(image: RasterImage, options: EncodeOptions) -> bytes:
    frames = [to_pil(frame.pixels) for frame in image.frames]
    return _save_pillow("GIF", frames, **_animation_params(image))


def _encode_webp(image: RasterImage, options: EncodeOptions) -> bytes:
    frames = [to_pil(frame.pixels) for frame in image.frames]
    return _save_pillow(
        "WEBP",
        frames,
        quality=options.quality,
        lossless=options.lossless,
        **_animation_params(image),
        **_icc_params(image),
    )


def _encode_avif(image: RasterImage, options: EncodeOptions) -> bytes:
    return _save_pillow("AVIF", [to_pil(image.frames[0].pixels)], quality=options.quality, **_icc_params(image))


def _encode_jpeg(image: RasterImage, options: EncodeOptions) -> bytes:
    return _save_pillow(
        "JPEG",
        [_flattened(image.frames[0].pixels, options)],
        quality=options.quality,
        **_icc_params(image),
    )


def _encode_pnm(image: RasterImage, options: EncodeOptions) -> bytes:
    return _save_pillow("PPM", [_flattened(image.frames[0].pixels, options)])


def _encode_ico(image: RasterImage, options: EncodeOptions) -> bytes:
    width, height = image.size
    if width > ICO_MAX_SIZE or height > ICO_MAX_SIZE:
        raise ConversionError(
            ErrorKind.ENCODE_FAILED,
            f"ico 最大支持 {ICO_MAX_SIZE}x{ICO_MAX_SIZE}，实际为 {width}x{height}",
        )
    return _save_pillow("ICO", [to_pil(image.frames[0].pixels)], sizes=[(width, height)])


def _encode_plain(name: str, image: RasterImage, options: EncodeOptions) -> bytes:
    return _save_pillow(name, [_opaque_or_rgba(image.frames[0].pixels)])


# ---------------------------------------------------------------------------
# OpenCV
# ---------------------------------------------------------------------------


_HDR_SIGNATURES = (b"#?RADIANCE", b"#?RGBE")
_EXR_SIGNATURE = b"\x76\x2f\x31\x01"


def _decode_hdr(data: bytes) -> RasterImage:
    if not data.startswith(_HDR_SIGNATURES):
        raise ConversionError(ErrorKind.DECODE_FAILED, "hdr 解码失败 => 缺少 Radiance 文件头")
    return _decode_opencv(data)


def _decode_exr(data: bytes) -> RasterImage:
    # cv2.imdecode 会按内容嗅探格式，需先确认魔数
    if not data.startswith(_EXR_SIGNATURE):
        raise ConversionError(ErrorKind.DECODE_FAILED, "exr 解码失败 => 缺少 OpenEXR 魔数")
    return _decode_opencv(data)


def _decode_opencv(data: bytes) -> RasterImage:
    array = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if array is None:
        raise ConversionError(ErrorKind.DECODE_FAILED, "OpenCV 无法识别图像数据")
    return RasterImage.single(from_cv(array))


def _encode_opencv(extension: str, array: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(extension, array)
    if not ok:
        raise ConversionError(ErrorKind.ENCODE_FAILED, f"OpenCV 无法编码 {extension}")
    return buffer.tobytes()


def _encode_hdr(image: RasterImage, options: EncodeOptions) -> bytes:
    pixels = to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA32F)
    pixels = flatten_alpha(pixels, parse_hex_color(options.background_color))
    return _encode_opencv(".hdr", to_cv(pixels, keep_alpha=False))


def _encode_exr(image: RasterImage, options: EncodeOptions) -> bytes:
    pixels = to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA32F)
    return _encode_opencv(".exr", to_cv(pixels))


# ---------------------------------------------------------------------------
# QOI / Farbfeld
# ---------------------------------------------------------------------------


def _decode_qoi(data: bytes) -> RasterImage:
    try:
        array = qoi.decode(data)
    except RuntimeError as exc:
        raise ConversionError(ErrorKind.DECODE_FAILED, f"qoi 解码失败 => {exc}") from exc
    if array is None:
        raise ConversionError(ErrorKind.DECODE_FAILED, "qoi 解码失败")
    if array.shape[2] == 3:
        alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
        array = np.concatenate([array, alpha], axis=2)
    return RasterImage.single(np.ascontiguousarray(array, dtype=np.uint8))


def _encode_qoi(image: RasterImage, options: EncodeOptions) -> bytes:
    pixels = np.array(to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA8), dtype=np.uint8, order="C")
    try:
        return qoi.encode(pixels)
    except RuntimeError as exc:
        raise ConversionError(ErrorKind.ENCODE_FAILED, f"qoi 编码失败 => {exc}") from exc


def _decode_ff(data: bytes) -> RasterImage:
    try:
        return RasterImage.single(decode_farbfeld(data))
    except FarbfeldError as exc:
        raise ConversionError(ErrorKind.DECODE_FAILED, f"farbfeld 解码失败 => {exc}") from exc


def _encode_ff(image: RasterImage, options: EncodeOptions) -> bytes:
    return encode_farbfeld(to_pixel_format(image.frames[0].pixels, PixelFormat.RGBA16))


_CODECS: Mapping[Format, _Codec] = {
    Format.AVIF: _Codec(partial(_decode_pillow, Format.AVIF), _encode_avif),
    Format.BMP: _Codec(partial(_decode_pillow, Format.BMP), partial(_encode_plain, "BMP")),
    Format.DDS: _Codec(partial(_decode_pillow, Format.DDS), partial(_encode_plain, "DDS")),
    Format.FARBFELD: _Codec(_decode_ff, _encode_ff),
    Format.GIF: _Codec(partial(_decode_pillow, Format.GIF), _encode_gif),
    Format.HDR: _Codec(_decode_hdr, _encode_hdr),
    Format.ICO: _Codec(partial(_decode_pillow, Format.ICO), _encode_ico),
    Format.JPEG: _Codec(partial(_decode_pillow, Format.JPEG), _encode_jpeg),
    Format.EXR: _Codec(_decode_exr, _encode_exr),
    Format.PNG: _Codec(partial(_decode_pillow, Format.PNG), _encode_png),
    Format.PNM: _Codec(partial(_decode_pillow, Format.PNM), _encode_pnm),
    Format.QOI: _Codec(_decode_qoi, _encode_qoi),
    Format.TGA: _Codec(partial(_decode_pillow, Format.TGA), partial(_encode_plain, "TGA")),
    Format.TIFF: _Codec(partial(_decode_pillow, Format.TIFF), _encode_tiff),
    Format.WEBP: _Codec(partial(_decode_pillow, Format.WEBP), _encode_webp),
}
