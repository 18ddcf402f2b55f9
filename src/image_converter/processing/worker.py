"""单个转换任务的执行单元：读取 → 解码 → [缩放] → 编码 → 写入。"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path

from image_converter.core.exceptions import ConversionError, io_error
from image_converter.core.formats import capabilities_of
from image_converter.core.models import ConversionJob, JobResult, Stage
from image_converter.processing import codecs
from image_converter.processing.resize import apply_resize

LOGGER = logging.getLogger(__name__)


def run_job(job: ConversionJob) -> JobResult:
    """执行完整的转换流程；任何阶段失败都立即返回失败结果，不留下半成品文件。"""

    try:
        data = job.input_path.read_bytes()
    except OSError as exc:
        return _failed(job, Stage.READ, io_error(exc, job.input_path, is_read=True))

    try:
        image = codecs.decode(job.input_format, data)
    except ConversionError as exc:
        return _failed(job, Stage.DECODE, exc)

    if job.resize is not None:
        try:
            image = apply_resize(image, job.resize)
        except ConversionError as exc:
            return _failed(job, Stage.RESIZE, exc)

    frames_dropped = 0
    if image.frame_count > 1 and not capabilities_of(job.output_format).is_multi_frame:
        frames_dropped = image.frame_count - 1
        LOGGER.warning(
            "%s 不支持多帧，仅写入第 0 帧，丢弃 %d 帧: %s",
            job.output_format.value,
            frames_dropped,
            job.input_path,
        )

    try:
        payload = codecs.encode(job.output_format, image, job.encode)
    except ConversionError as exc:
        return _failed(job, Stage.ENCODE, exc)

    try:
        write_atomic(job.output_path, payload)
    except OSError as exc:
        return _failed(job, Stage.WRITE, io_error(exc, job.output_path, is_read=False))

    LOGGER.info("%s -> %s (%d 字节)", job.input_path, job.output_path, len(payload))
    return JobResult.success(job, bytes_written=len(payload), frames_dropped=frames_dropped)


def write_atomic(destination: Path, payload: bytes) -> None:
    """先写入同目录下的临时文件，再原子替换到目标路径。

    mkstemp 创建的文件权限为 0600，替换前改为与普通新建文件一致的权限；
    覆盖已有文件时沿用原文件的权限。
    """

    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.chmod(temp_name, _target_mode(destination))
        os.replace(temp_name, destination)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


def _target_mode(destination: Path) -> int:
    try:
        return stat.S_IMODE(destination.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _failed(job: ConversionJob, stage: Stage, exc: ConversionError) -> JobResult:
    LOGGER.debug("任务失败 [%s] %s: %s", stage.value, job.input_path, exc.message)
    return JobResult.failure(job, stage, exc.kind, exc.message)
