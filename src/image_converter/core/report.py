"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path

from image_converter.core.models import BatchReport, JobResult

HEADER = [
    "input_path",
    "output_path",
    "input_format",
    "output_format",
    "status",
    "stage",
    "error_kind",
    "bytes_written",
    "frames_dropped",
    "message",
]


def write_csv_report(report: BatchReport, report_path: Path) -> Path:
    """将处理结果按任务顺序写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for result in report.results:
            writer.writerow(_row(result))
    return report_path


def _row(result: JobResult) -> list[str]:
    job = result.job
    return [
        str(job.input_path),
        str(job.output_path) if result.succeeded else "",
        job.input_format.value,
        job.output_format.value,
        "success" if result.succeeded else "failure",
        result.stage.value if result.stage else "",
        result.error_kind.value if result.error_kind else "",
        str(result.bytes_written),
        str(result.frames_dropped),
        result.message or "",
    ]
