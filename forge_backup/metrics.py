"""Run duration and size summaries."""

from __future__ import annotations

from dataclasses import dataclass

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


@dataclass(frozen=True)
class DumpMetrics:
    file_count: int
    total_bytes: int
    elapsed_seconds: float

    @property
    def throughput_bytes_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total_bytes / self.elapsed_seconds


def calculate_dump_metrics(sizes: list[int], elapsed_seconds: float) -> DumpMetrics:
    if any(size < 0 for size in sizes):
        raise ValueError("sizes must be >= 0")
    if elapsed_seconds < 0:
        raise ValueError("elapsed_seconds must be >= 0")
    return DumpMetrics(
        file_count=len(sizes),
        total_bytes=sum(sizes),
        elapsed_seconds=elapsed_seconds,
    )


def format_size(num_bytes: float) -> str:
    value = max(num_bytes, 0.0)
    unit_index = 0
    while value >= 1000.0 and unit_index < len(_SIZE_UNITS) - 1:
        value /= 1000.0
        unit_index += 1
    return f"{value:.2f}{_SIZE_UNITS[unit_index]}"
