"""项目内使用的自定义异常定义。"""

from __future__ import annotations

import errno
from enum import Enum
from typing import Optional


class ImageConverterError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageConverterError):
    """配置不合法时抛出。"""


class ErrorKind(str, Enum):
    """转换失败的分类，写入 JobResult 与报告。"""

    UNKNOWN_FORMAT = "unknown-format"
    UNSUPPORTED_OPERATION = "unsupported-operation"
    DECODE_FAILED = "decode-failed"
    INVALID_RESIZE = "invalid-resize"
    ENCODE_FAILED = "encode-failed"
    IO_ERROR = "io-error"
    INVALID_ARGUMENTS = "invalid-arguments"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class ConversionError(ImageConverterError):
    """带有错误分类的转换异常。"""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __reduce__(self):
        # 需要跨进程传递
        return (self.__class__, (self.kind, self.message))


_OS_ERROR_REASONS = {
    errno.ENOENT: "Not found",
    errno.EACCES: "Permission denied",
    errno.EPERM: "Permission denied",
    errno.EEXIST: "Already exists",
    errno.ENOTDIR: "Is not a directory",
    errno.EISDIR: "Is a directory",
    errno.ENOSPC: "Storage is full",
    errno.EFBIG: "File is too large",
}


def describe_os_error(exc: OSError) -> str:
    """将 OSError 归纳为简短原因描述。"""

    return _OS_ERROR_REASONS.get(exc.errno, exc.strerror or "Unknown (unhandled)")


def io_error(exc: OSError, path: Optional[object], *, is_read: bool) -> ConversionError:
    """把文件系统异常包装为 IO_ERROR 类型的 ConversionError。"""

    action = "读取" if is_read else "写入"
    return ConversionError(ErrorKind.IO_ERROR, f"{action}失败 '{path}' => {describe_os_error(exc)}")
