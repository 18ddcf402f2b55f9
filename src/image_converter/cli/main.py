"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from image_converter.core.config import (
    AspectPolicy,
    ConversionOptions,
    EncodeOptions,
    ResizeFilter,
    ResizeSpec,
)
from image_converter.core.exceptions import ConversionError, ImageConverterError
from image_converter.core.formats import Format, all_formats, capabilities_of, parse_format
from image_converter.core.models import BatchReport, JobResult
from image_converter.core.progress import ProgressUpdate
from image_converter.core.scanner import expand_inputs
from image_converter.processing.pipeline import convert
from image_converter.utils.logging import setup_logging

app = typer.Typer(help="图片格式转换工具，支持单文件与批量转换。")
console = Console()

EXIT_PLAN_ERROR = 2


def _parse_format_option(value: Optional[str]) -> Optional[Format]:
    if value is None:
        return None
    try:
        return parse_format(value)
    except ConversionError as exc:
        raise typer.BadParameter(exc.message) from exc


def _build_resize(
    width: Optional[int],
    height: Optional[int],
    scale: Optional[float],
    stretch: bool,
    resize_filter: ResizeFilter,
) -> Optional[ResizeSpec]:
    if width is None and height is None and scale is None:
        return None
    if scale is not None and (width is not None or height is not None):
        raise typer.BadParameter("--scale 不能与 --width/--height 同时使用")
    return ResizeSpec(
        width=width,
        height=height,
        scale=scale,
        aspect=AspectPolicy.STRETCH if stretch else AspectPolicy.PRESERVE,
        filter=resize_filter,
    )


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("转换图片", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


def _describe(result: JobResult) -> str:
    job = result.job
    if result.succeeded:
        line = (
            f"{job.input_path} ({job.input_format.value}) -> "
            f"{job.output_path} ({job.output_format.value})"
        )
        if result.frames_dropped:
            line += f" [丢弃 {result.frames_dropped} 帧]"
        return line
    stage = result.stage.value if result.stage else "-"
    kind = result.error_kind.value if result.error_kind else "-"
    return f"失败 {job.input_path} [{stage}/{kind}]: {result.message}"


def _print_report(report: BatchReport) -> None:
    for result in report.results:
        typer.echo(_describe(result), err=not result.succeeded)
    if len(report.results) > 1:
        typer.echo(f"转换完成：成功 {report.succeeded} 个，失败 {report.failed} 个。")


@app.command("convert")
def convert_cli(  # noqa: PLR0913
    inputs: List[str] = typer.Argument(..., help="输入文件或 glob 模式，可指定多个"),
    output: Path = typer.Option(..., "--output", "-o", help="输出文件；批量模式下为输出目录"),
    input_format: Optional[str] = typer.Option(None, "--input-format", "-f", help="强制指定输入格式"),
    output_format: Optional[str] = typer.Option(None, "--output-format", "-d", help="指定输出格式"),
    batch: bool = typer.Option(False, "--batch", "-b", help="批量模式：每个输入写入输出目录"),
    width: Optional[int] = typer.Option(None, "--width", help="目标宽度"),
    height: Optional[int] = typer.Option(None, "--height", help="目标高度"),
    scale: Optional[float] = typer.Option(None, "--scale", help="缩放比例"),
    stretch: bool = typer.Option(False, "--stretch", help="不保持宽高比"),
    resize_filter: ResizeFilter = typer.Option(ResizeFilter.LANCZOS, "--filter", help="重采样算法"),
    quality: int = typer.Option(90, "--quality", "-q", min=1, max=100, help="有损编码质量"),
    lossless: bool = typer.Option(False, "--lossless", help="WebP 使用无损编码"),
    background: str = typer.Option("#FFFFFF", "--background", help="不支持透明度的格式使用的背景色 (HEX)"),
    conflict_strategy: str = typer.Option("overwrite", "--on-conflict", help="输出文件冲突策略 overwrite/rename"),
    max_workers: Optional[int] = typer.Option(None, "--workers", "-w", help="并发进程数量，默认等于 CPU 核数"),
    report_path: Optional[Path] = typer.Option(None, "--report", help="写入 CSV 报告的路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """转换图片格式。"""

    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    try:
        options = ConversionOptions(
            output=output.expanduser(),
            input_format=_parse_format_option(input_format),
            output_format=_parse_format_option(output_format),
            resize=_build_resize(width, height, scale, stretch, resize_filter),
            batch=batch,
            encode=EncodeOptions(quality=quality, background_color=background, lossless=lossless),
            conflict_strategy=conflict_strategy,
            max_workers=max_workers,
            report_path=report_path,
        )
    except ImageConverterError as exc:
        raise typer.BadParameter(str(exc)) from exc

    paths = expand_inputs(inputs)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=Console(stderr=True),
        transient=True,
    )

    try:
        with progress:
            report = convert(paths, options, progress_callback=_build_progress_callback(progress))
    except ConversionError as exc:
        typer.echo(f"错误 [{exc.kind.value}]: {exc.message}", err=True)
        raise typer.Exit(code=EXIT_PLAN_ERROR) from exc

    _print_report(report)
    if report_path is not None:
        typer.echo(f"报告文件：{report_path}")
    raise typer.Exit(code=report.exit_code)


@app.command("formats")
def formats_cli() -> None:
    """列出支持的格式及其能力。"""

    table = Table(title="支持的格式")
    table.add_column("格式")
    table.add_column("解码")
    table.add_column("编码")
    table.add_column("多帧")
    table.add_column("扩展名")

    for fmt in all_formats():
        caps = capabilities_of(fmt)
        table.add_row(
            fmt.value,
            "✓" if caps.can_decode else "",
            "✓" if caps.can_encode else "",
            "✓" if caps.is_multi_frame else "",
            ", ".join(caps.extensions),
        )
    console.print(table)


if __name__ == "__main__":
    app()
