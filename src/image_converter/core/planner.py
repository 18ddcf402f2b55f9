"""任务规划：把输入路径列表与输出位置配对为 ConversionJob 列表。"""

from __future__ import annotations

import logging
from itertools import count
from pathlib import Path
from typing import Sequence, Set

from image_converter.core.config import ConversionOptions
from image_converter.core.exceptions import ConversionError, ErrorKind, io_error
from image_converter.core.formats import Format, default_extension_of
from image_converter.core.models import ConversionJob
from image_converter.core.resolver import resolve_input, resolve_output

LOGGER = logging.getLogger(__name__)


def plan_jobs(input_paths: Sequence[Path], options: ConversionOptions) -> list[ConversionJob]:
    """生成任务列表；任何格式解析或目录创建失败都会在执行前抛出 ConversionError。

    返回顺序与 ``input_paths`` 一致。
    """

    if not input_paths:
        raise ConversionError(ErrorKind.INVALID_ARGUMENTS, "没有输入文件")

    if options.batch:
        jobs = _plan_batch(input_paths, options)
    else:
        if len(input_paths) != 1:
            raise ConversionError(
                ErrorKind.INVALID_ARGUMENTS,
                f"单文件模式只接受一个输入，实际为 {len(input_paths)} 个（批量转换请启用 batch）",
            )
        jobs = [_plan_single(Path(input_paths[0]), options)]

    LOGGER.info("规划完成：%d 个任务", len(jobs))
    return jobs


def _plan_single(input_path: Path, options: ConversionOptions) -> ConversionJob:
    input_format = resolve_input(input_path, options.input_format)
    output = Path(options.output)

    if output.is_dir():
        output_format = _require_output_format(options, output)
        destination = _destination_in(output, input_path, output_format)
    else:
        output_format = resolve_output(output, options.output_format)
        destination = output

    destination = _apply_conflict_strategy(destination, options.conflict_strategy, reserved=set())
    return _make_job(input_path, input_format, destination, output_format, options)


def _plan_batch(input_paths: Sequence[Path], options: ConversionOptions) -> list[ConversionJob]:
    output_dir = Path(options.output)
    output_format = _require_output_format(options, output_dir)
    input_formats = [resolve_input(Path(path), options.input_format) for path in input_paths]

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise io_error(exc, output_dir, is_read=False) from exc

    reserved: Set[Path] = set()
    jobs: list[ConversionJob] = []
    for raw_path, input_format in zip(input_paths, input_formats):
        input_path = Path(raw_path)
        destination = _destination_in(output_dir, input_path, output_format)
        destination = _apply_conflict_strategy(destination, options.conflict_strategy, reserved=reserved)
        reserved.add(destination)
        jobs.append(_make_job(input_path, input_format, destination, output_format, options))
    return jobs


def _require_output_format(options: ConversionOptions, output_dir: Path) -> Format:
    if options.output_format is None:
        raise ConversionError(
            ErrorKind.UNKNOWN_FORMAT,
            f"输出到目录 {output_dir} 时必须指定输出格式 (--output-format)",
        )
    return resolve_output(output_dir, options.output_format)


def _destination_in(output_dir: Path, input_path: Path, output_format: Format) -> Path:
    return output_dir / f"{input_path.stem}.{default_extension_of(output_format)}"


def _apply_conflict_strategy(destination: Path, strategy: str, *, reserved: Set[Path]) -> Path:
    """overwrite 覆盖磁盘上已有文件，但同一批次内的重名视为错误；rename 依次追加序号。"""

    if strategy == "overwrite":
        if destination in reserved:
            raise ConversionError(
                ErrorKind.INVALID_ARGUMENTS,
                f"多个输入映射到同一个输出文件: {destination}（可使用 --on-conflict rename）",
            )
        return destination

    if not destination.exists() and destination not in reserved:
        return destination

    stem = destination.stem
    suffix = destination.suffix
    for idx in count(1):
        candidate = destination.with_name(f"{stem}_{idx}{suffix}")
        if not candidate.exists() and candidate not in reserved:
            LOGGER.info("目标已存在: %s -> 重命名为 %s", destination.name, candidate.name)
            return candidate

    # 理论上不会执行到此处
    return destination


def _make_job(
    input_path: Path,
    input_format: Format,
    destination: Path,
    output_format: Format,
    options: ConversionOptions,
) -> ConversionJob:
    return ConversionJob(
        input_path=input_path,
        input_format=input_format,
        output_path=destination,
        output_format=output_format,
        resize=options.resize,
        encode=options.encode,
    )
