"""批处理执行器：并发执行任务、隔离失败并按规划顺序汇总结果。"""

from __future__ import annotations

import logging
import os
import signal
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from concurrent.futures.process import BrokenProcessPool
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from image_converter.core.config import ConversionOptions
from image_converter.core.exceptions import ErrorKind
from image_converter.core.models import BatchReport, ConversionJob, JobResult, Stage
from image_converter.core.planner import plan_jobs
from image_converter.core.progress import ProgressCallback, ProgressUpdate
from image_converter.core.report import write_csv_report
from image_converter.processing.worker import run_job

LOGGER = logging.getLogger(__name__)


def convert(
    input_paths: Sequence[Path],
    options: ConversionOptions,
    progress_callback: ProgressCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> BatchReport:
    """规划并执行全部任务。规划阶段的 ConversionError 直接向上抛出。"""

    jobs = plan_jobs(input_paths, options)
    report = run_batch(
        jobs,
        max_workers=options.max_workers,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )

    if options.report_path is not None:
        try:
            write_csv_report(report, options.report_path)
        except OSError as exc:
            LOGGER.error("写入报告失败：%s", exc)
    return report


def run_batch(
    jobs: Sequence[ConversionJob],
    *,
    max_workers: Optional[int] = None,
    progress_callback: ProgressCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> BatchReport:
    """执行全部任务；单个任务失败不影响其他任务。

    结果写入按任务下标预分配的列表，因此报告顺序与 ``jobs`` 一致，与完成顺序无关。
    ``cancel_event`` 被设置或收到 KeyboardInterrupt 后不再派发新任务，已在执行的
    任务会运行完毕，未派发的任务记为 CANCELLED。
    """

    total = len(jobs)
    results: list[Optional[JobResult]] = [None] * total
    tracker = _Tracker(total, progress_callback)
    workers = max_workers or os.cpu_count() or 1

    LOGGER.info("开始执行 %d 个任务（并发数 %d）", total, min(workers, max(total, 1)))
    tracker.emit(message="开始执行转换任务")

    if workers <= 1 or total <= 1:
        _run_serial(jobs, results, tracker, cancel_event)
    else:
        _run_parallel(jobs, results, tracker, cancel_event, workers)

    for index, result in enumerate(results):
        if result is None:
            results[index] = JobResult.failure(jobs[index], Stage.DISPATCH, ErrorKind.CANCELLED, "任务已取消，未执行")

    report = BatchReport.from_results(results)
    LOGGER.info("处理完成：成功 %d 个，失败 %d 个", report.succeeded, report.failed)
    tracker.emit(message="处理完成")
    return report


def _run_serial(
    jobs: Sequence[ConversionJob],
    results: list[Optional[JobResult]],
    tracker: "_Tracker",
    cancel_event: Optional[threading.Event],
) -> None:
    try:
        for index, job in enumerate(jobs):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.warning("收到取消请求，停止派发剩余 %d 个任务", len(jobs) - index)
                return
            results[index] = _guarded_run(job)
            tracker.record(results[index])
    except KeyboardInterrupt:
        LOGGER.warning("收到中断信号，停止派发剩余任务")


def _run_parallel(
    jobs: Sequence[ConversionJob],
    results: list[Optional[JobResult]],
    tracker: "_Tracker",
    cancel_event: Optional[threading.Event],
    workers: int,
) -> None:
    next_index = 0
    stopping = False
    # 工作进程异常退出会使整个进程池失效，此时重建进程池继续派发剩余任务
    while not stopping and next_index < len(jobs):
        next_index, stopping = _drain_pool(jobs, results, tracker, cancel_event, workers, next_index)


def _drain_pool(
    jobs: Sequence[ConversionJob],
    results: list[Optional[JobResult]],
    tracker: "_Tracker",
    cancel_event: Optional[threading.Event],
    workers: int,
    next_index: int,
) -> Tuple[int, bool]:
    """在一个进程池中派发任务，返回下一个待派发的下标以及是否已停止派发。"""

    pending: Dict[Future, int] = {}
    stopping = False

    with ProcessPoolExecutor(max_workers=workers, initializer=_ignore_sigint) as executor:
        while next_index < len(jobs) or pending:
            try:
                # 任务窗口不超过并发数，取消时只需等待已派发的任务
                while not stopping and next_index < len(jobs) and len(pending) < workers:
                    if cancel_event is not None and cancel_event.is_set():
                        LOGGER.warning("收到取消请求，停止派发剩余 %d 个任务", len(jobs) - next_index)
                        stopping = True
                        break
                    future = executor.submit(run_job, jobs[next_index])
                    pending[future] = next_index
                    next_index += 1

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    results[index] = _collect(future, jobs[index])
                    tracker.record(results[index])
            except KeyboardInterrupt:
                if not stopping:
                    LOGGER.warning("收到中断信号，等待 %d 个进行中的任务完成", len(pending))
                stopping = True
            except BrokenProcessPool as exc:
                LOGGER.error("工作进程异常退出，%d 个进行中的任务记为失败，重建进程池：%s", len(pending), exc)
                for future, index in pending.items():
                    results[index] = _collect(future, jobs[index])
                    tracker.record(results[index])
                pending.clear()
                break
    return next_index, stopping


def _collect(future: Future, job: ConversionJob) -> JobResult:
    try:
        return future.result()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return JobResult.failure(job, Stage.WORKER, ErrorKind.INTERNAL, f"工作进程异常: {exc}")


def _guarded_run(job: ConversionJob) -> JobResult:
    try:
        return run_job(job)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return JobResult.failure(job, Stage.WORKER, ErrorKind.INTERNAL, f"任务执行异常: {exc}")


def _ignore_sigint() -> None:
    # 中断只由主进程处理，工作进程继续完成当前任务
    signal.signal(signal.SIGINT, signal.SIG_IGN)


class _Tracker:
    """累计进度并回调。"""

    def __init__(self, total: int, callback: ProgressCallback) -> None:
        self.total = total
        self.completed = 0
        self.failed = 0
        self._callback = callback

    def record(self, result: JobResult) -> None:
        self.completed += 1
        if not result.succeeded:
            self.failed += 1
        verb = "完成" if result.succeeded else "失败"
        self.emit(current=result.job.input_path, message=f"{verb} {result.job.input_path.name}")

    def emit(self, *, current: Optional[Path] = None, message: Optional[str] = None) -> None:
        if not self._callback:
            return
        self._callback(
            ProgressUpdate(
                total=self.total,
                completed=self.completed,
                failed=self.failed,
                current=current,
                message=message,
            )
        )
