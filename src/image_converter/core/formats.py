"""支持的图片格式及其能力表。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from image_converter.core.exceptions import ConversionError, ErrorKind


class Format(str, Enum):
    """Closed set of formats the converter knows about."""

    AVIF = "avif"
    BMP = "bmp"
    DDS = "dds"
    FARBFELD = "farbfeld"
    GIF = "gif"
    HDR = "hdr"
    ICO = "ico"
    JPEG = "jpeg"
    EXR = "exr"
    PNG = "png"
    PNM = "pnm"
    QOI = "qoi"
    TGA = "tga"
    TIFF = "tiff"
    WEBP = "webp"


@dataclass(frozen=True, slots=True)
class Capabilities:
    """格式的读写能力。"""

    can_decode: bool
    can_encode: bool
    is_multi_frame: bool
    extensions: Tuple[str, ...]


def _caps(*extensions: str, multi_frame: bool = False, decode: bool = True, encode: bool = True) -> Capabilities:
    return Capabilities(
        can_decode=decode,
        can_encode=encode,
        is_multi_frame=multi_frame,
        extensions=extensions,
    )


# 扩展名按推荐顺序排列，第一个即默认扩展名。
_REGISTRY: Mapping[Format, Capabilities] = MappingProxyType(
    {
        Format.AVIF: _caps("avif"),
        Format.BMP: _caps("bmp"),
        Format.DDS: _caps("dds"),
        Format.FARBFELD: _caps("ff", "farbfeld"),
        Format.GIF: _caps("gif", multi_frame=True),
        Format.HDR: _caps("hdr"),
        Format.ICO: _caps("ico"),
        Format.JPEG: _caps("jpg", "jpeg", "jpe", "jfif"),
        Format.EXR: _caps("exr"),
        Format.PNG: _caps("png", "apng", multi_frame=True),
        Format.PNM: _caps("pnm", "pbm", "pgm", "ppm"),
        Format.QOI: _caps("qoi"),
        Format.TGA: _caps("tga", "icb", "vda", "vst"),
        Format.TIFF: _caps("tiff", "tif", multi_frame=True),
        Format.WEBP: _caps("webp", multi_frame=True),
    }
)

_EXTENSION_INDEX: Mapping[str, Format] = MappingProxyType(
    {ext: fmt for fmt, caps in _REGISTRY.items() for ext in caps.extensions}
)


def capabilities_of(fmt: Format) -> Capabilities:
    return _REGISTRY[fmt]


def default_extension_of(fmt: Format) -> str:
    return _REGISTRY[fmt].extensions[0]


def format_for_extension(ext: str) -> Optional[Format]:
    """Look up a format by file extension; a leading dot and letter case are ignored."""

    normalized = ext.strip().lstrip(".").lower()
    if not normalized:
        return None
    return _EXTENSION_INDEX.get(normalized)


def format_for_path(path: Union[str, Path]) -> Optional[Format]:
    suffix = Path(path).suffix
    if not suffix:
        return None
    return format_for_extension(suffix)


def parse_format(name: str) -> Format:
    """把命令行给出的格式名或扩展名解析为 Format。"""

    normalized = name.strip().lstrip(".").lower()
    try:
        return Format(normalized)
    except ValueError:
        pass

    fmt = format_for_extension(normalized)
    if fmt is None:
        raise ConversionError(ErrorKind.UNKNOWN_FORMAT, f"未知格式 {name}，使用 `formats` 命令查看支持列表")
    return fmt


def all_formats() -> Tuple[Format, ...]:
    return tuple(_REGISTRY)
