"""转换流水线与批处理执行器测试。"""

from __future__ import annotations

import csv
import os
import threading
from pathlib import Path

import pytest
from PIL import Image

from image_converter.core.config import ConversionOptions, ResizeSpec
from image_converter.core.exceptions import ErrorKind
from image_converter.core.formats import Format
from image_converter.core.models import ConversionJob, Stage
from image_converter.core.planner import plan_jobs
from image_converter.core.progress import ProgressUpdate
from image_converter.processing import pipeline
from image_converter.processing.pipeline import convert, run_batch
from image_converter.processing.worker import run_job


def _make_png(path: Path, size: tuple[int, int] = (64, 32), color: str = "blue") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def test_png_to_ico_keeps_dimensions(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "logo.png", (100, 50))
    options = ConversionOptions(output=tmp_path / "logo.out", output_format=Format.ICO, max_workers=1)

    report = convert([source], options)

    assert report.exit_code == 0
    result = report.results[0]
    assert result.succeeded
    assert result.bytes_written == (tmp_path / "logo.out").stat().st_size
    with Image.open(tmp_path / "logo.out") as icon:
        assert icon.format == "ICO"
        assert icon.size == (100, 50)


def test_batch_png_to_jpg_names_outputs_after_inputs(tmp_path: Path) -> None:
    sources = [_make_png(tmp_path / "images" / f"{name}.png") for name in ("one", "two", "three")]
    output = tmp_path / "output"
    options = ConversionOptions(output=output, output_format=Format.JPEG, batch=True, max_workers=1)

    report = convert(sources, options)

    assert report.exit_code == 0
    assert sorted(p.name for p in output.iterdir()) == ["one.jpg", "three.jpg", "two.jpg"]
    with Image.open(output / "two.jpg") as converted:
        assert converted.format == "JPEG"
        assert converted.size == (64, 32)


@pytest.mark.parametrize("workers", [1, 2])
def test_malformed_inputs_are_isolated_and_ordered(tmp_path: Path, workers: int) -> None:
    inputs = tmp_path / "in"
    sources = []
    malformed = {1, 3}
    for index in range(5):
        path = inputs / f"img{index}.png"
        if index in malformed:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("not an image")
        else:
            _make_png(path)
        sources.append(path)

    options = ConversionOptions(output=tmp_path / "out", output_format=Format.BMP, batch=True, max_workers=workers)
    report = convert(sources, options)

    assert len(report.results) == 5
    assert [r.job.input_path for r in report.results] == sources
    assert [i for i, r in enumerate(report.results) if not r.succeeded] == sorted(malformed)
    assert report.failed == 2 and report.succeeded == 3
    assert report.is_partial
    assert report.exit_code != 0
    for index in malformed:
        failure = report.results[index]
        assert failure.stage is Stage.DECODE
        assert failure.error_kind is ErrorKind.DECODE_FAILED
        assert not failure.job.output_path.exists()


def test_failed_encode_leaves_no_output(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "big.png", (300, 300))
    options = ConversionOptions(output=tmp_path / "big.ico", max_workers=1)

    report = convert([source], options)

    result = report.results[0]
    assert result.stage is Stage.ENCODE
    assert result.error_kind is ErrorKind.ENCODE_FAILED
    assert not (tmp_path / "big.ico").exists()
    assert list(tmp_path.glob("*.part")) == []


def test_missing_input_is_a_read_failure(tmp_path: Path) -> None:
    job = ConversionJob(
        input_path=tmp_path / "absent.png",
        input_format=Format.PNG,
        output_path=tmp_path / "absent.bmp",
        output_format=Format.BMP,
    )

    result = run_job(job)

    assert result.stage is Stage.READ
    assert result.error_kind is ErrorKind.IO_ERROR
    assert "Not found" in (result.message or "")


def test_write_into_missing_directory_is_a_write_failure(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "a.png")
    job = ConversionJob(
        input_path=source,
        input_format=Format.PNG,
        output_path=tmp_path / "missing" / "a.bmp",
        output_format=Format.BMP,
    )

    result = run_job(job)

    assert result.stage is Stage.WRITE
    assert result.error_kind is ErrorKind.IO_ERROR


def test_invalid_resize_fails_the_job(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "a.png")
    options = ConversionOptions(output=tmp_path / "a.bmp", resize=ResizeSpec(scale=0.0001), max_workers=1)

    result = convert([source], options).results[0]

    assert result.stage is Stage.RESIZE
    assert result.error_kind is ErrorKind.INVALID_RESIZE


def test_resize_is_applied(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "a.png", (100, 50))
    options = ConversionOptions(output=tmp_path / "a.qoi", resize=ResizeSpec(width=40), max_workers=1)

    assert convert([source], options).exit_code == 0
    with Image.open(tmp_path / "a.qoi") as converted:
        assert converted.size == (40, 20)


def test_animated_to_single_frame_records_dropped_frames(tmp_path: Path) -> None:
    source = tmp_path / "anim.gif"
    frames = [Image.new("RGB", (20, 20), color) for color in ("red", "green", "blue")]
    frames[0].save(source, save_all=True, append_images=frames[1:], duration=100, loop=0)
    options = ConversionOptions(output=tmp_path / "still.png", output_format=Format.JPEG, max_workers=1)

    result = convert([source], options).results[0]

    assert result.succeeded
    assert result.frames_dropped == 2


def test_animated_gif_to_webp_keeps_frames(tmp_path: Path) -> None:
    source = tmp_path / "anim.gif"
    frames = [Image.new("RGB", (20, 20), color) for color in ("red", "green", "blue")]
    frames[0].save(source, save_all=True, append_images=frames[1:], duration=100, loop=0)

    result = convert([source], ConversionOptions(output=tmp_path / "anim.webp", max_workers=1)).results[0]

    assert result.succeeded and result.frames_dropped == 0
    with Image.open(tmp_path / "anim.webp") as converted:
        assert getattr(converted, "n_frames", 1) == 3


def test_cancelled_batch_reports_every_job(tmp_path: Path) -> None:
    sources = [_make_png(tmp_path / f"{i}.png") for i in range(3)]
    jobs = plan_jobs(sources, ConversionOptions(output=tmp_path / "out", output_format=Format.TGA, batch=True))
    cancel = threading.Event()
    cancel.set()

    report = run_batch(jobs, max_workers=1, cancel_event=cancel)

    assert len(report.results) == 3
    assert all(r.error_kind is ErrorKind.CANCELLED for r in report.results)
    assert not any(job.output_path.exists() for job in jobs)


def test_progress_and_csv_report(tmp_path: Path) -> None:
    sources = [_make_png(tmp_path / "ok.png"), tmp_path / "bad.png"]
    sources[1].write_bytes(b"\x89PNG\r\n\x1a\n truncated")
    report_path = tmp_path / "reports" / "report.csv"
    options = ConversionOptions(
        output=tmp_path / "out",
        output_format=Format.TIFF,
        batch=True,
        max_workers=1,
        report_path=report_path,
    )
    updates: list[ProgressUpdate] = []

    report = convert(sources, options, progress_callback=updates.append)

    assert updates[-1].completed == 2
    assert updates[-1].failed == 1
    assert report.exit_code == 1

    with report_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["status"] for row in rows] == ["success", "failure"]
    assert rows[0]["output_format"] == "tiff"
    assert rows[1]["error_kind"] == "decode-failed"
    assert rows[1]["stage"] == "decode"


def _exit_on_crash_marker(job: ConversionJob):
    # 模拟原生解码器导致的进程崩溃
    if job.input_path.name == "crash.png":
        os._exit(1)
    return run_job(job)


def test_worker_crash_does_not_abort_batch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    names = ["a", "crash", "b", "c", "d", "e", "f", "g"]
    sources = [_make_png(tmp_path / "in" / f"{name}.png") for name in names]
    jobs = plan_jobs(sources, ConversionOptions(output=tmp_path / "out", output_format=Format.BMP, batch=True))
    monkeypatch.setattr(pipeline, "run_job", _exit_on_crash_marker)

    report = run_batch(jobs, max_workers=2)

    assert [r.job.input_path for r in report.results] == sources
    crashed = report.results[1]
    assert crashed.error_kind is ErrorKind.INTERNAL
    assert crashed.stage is Stage.WORKER
    for result in report.results:
        if not result.succeeded:
            assert result.error_kind is ErrorKind.INTERNAL
    assert report.results[-1].succeeded
    assert report.succeeded >= 4
    assert report.exit_code == 1


def test_cancel_during_parallel_batch_finishes_in_flight_jobs(tmp_path: Path) -> None:
    sources = [_make_png(tmp_path / "in" / f"{i}.png") for i in range(6)]
    jobs = plan_jobs(sources, ConversionOptions(output=tmp_path / "out", output_format=Format.PNG, batch=True))
    cancel = threading.Event()

    def on_progress(update: ProgressUpdate) -> None:
        if update.completed >= 1:
            cancel.set()

    report = run_batch(jobs, max_workers=2, progress_callback=on_progress, cancel_event=cancel)

    assert [r.job for r in report.results] == jobs
    assert [r.succeeded for r in report.results] == [True, True, False, False, False, False]
    for result in report.results[2:]:
        assert result.error_kind is ErrorKind.CANCELLED
        assert result.stage is Stage.DISPATCH
    assert [job.output_path.exists() for job in jobs] == [True, True, False, False, False, False]
    assert report.exit_code == 1


@pytest.mark.skipif(os.name != "posix", reason="依赖 POSIX 文件权限")
def test_written_files_follow_umask(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "a.png")
    previous = os.umask(0o022)
    try:
        report = convert([source], ConversionOptions(output=tmp_path / "a.bmp", max_workers=1))
    finally:
        os.umask(previous)

    assert report.exit_code == 0
    assert (tmp_path / "a.bmp").stat().st_mode & 0o777 == 0o644


@pytest.mark.skipif(os.name != "posix", reason="依赖 POSIX 文件权限")
def test_overwrite_keeps_existing_file_mode(tmp_path: Path) -> None:
    source = _make_png(tmp_path / "a.png")
    target = tmp_path / "a.tga"
    target.write_bytes(b"old")
    target.chmod(0o640)

    report = convert([source], ConversionOptions(output=target, max_workers=1))

    assert report.exit_code == 0
    assert target.stat().st_mode & 0o777 == 0o640
