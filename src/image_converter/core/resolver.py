"""根据显式指定与扩展名确定任务的输入/输出格式。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from image_converter.core.exceptions import ConversionError, ErrorKind
from image_converter.core.formats import Format, capabilities_of, format_for_path

LOGGER = logging.getLogger(__name__)


def resolve_input(path: Path, explicit_override: Optional[Format] = None) -> Format:
    """确定输入格式，并确认该格式可解码。"""

    fmt = _resolve(path, explicit_override)
    if not capabilities_of(fmt).can_decode:
        raise ConversionError(ErrorKind.UNSUPPORTED_OPERATION, f"格式 {fmt.value} 不支持解码: {path}")
    return fmt


def resolve_output(path: Path, explicit_override: Optional[Format] = None) -> Format:
    """确定输出格式，并确认该格式可编码。"""

    fmt = _resolve(path, explicit_override)
    if not capabilities_of(fmt).can_encode:
        raise ConversionError(ErrorKind.UNSUPPORTED_OPERATION, f"格式 {fmt.value} 不支持编码: {path}")
    return fmt


def _resolve(path: Path, explicit_override: Optional[Format]) -> Format:
    if explicit_override is not None:
        return explicit_override

    fmt = format_for_path(path)
    if fmt is None:
        raise ConversionError(ErrorKind.UNKNOWN_FORMAT, f"无法从扩展名识别格式: {path}")

    LOGGER.debug("根据扩展名识别格式: %s -> %s", path, fmt.value)
    return fmt
