"""Performance profiler for bus-finder pipeline stages.

Tracks timing statistics for each stage (preprocessing, inference,
postprocessing, nms, image_crop, ocr_api, detection_pipeline, end_to_end,
tts) and provides summaries for /api/status/perf and the CLI report.
"""

import statistics
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Keep the last N samples per metric for median / p95
MAX_SAMPLES = 100


@dataclass
class TimingStats:
    """Statistics for a single profiled operation."""

    name: str
    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0
    latest_time: float = 0.0
    samples: List[float] = field(default_factory=list)

    def add_sample(self, duration: float):
        self.count += 1
        self.total_time += duration
        self.min_time = min(self.min_time, duration)
        self.max_time = max(self.max_time, duration)
        self.latest_time = duration

        self.samples.append(duration)
        if len(self.samples) > MAX_SAMPLES:
            self.samples.pop(0)

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count > 0 else 0.0

    @property
    def median_time(self) -> float:
        return statistics.median(self.samples) if self.samples else 0.0

    @property
    def p95_time(self) -> float:
        """95th percentile time."""
        if not self.samples:
            return 0.0
        sorted_samples = sorted(self.samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": self.avg_time * 1000,
            "median_ms": self.median_time * 1000,
            "min_ms": (self.min_time if self.count else 0.0) * 1000,
            "max_ms": self.max_time * 1000,
            "p95_ms": self.p95_time * 1000,
            "latest_ms": self.latest_time * 1000,
            "total_time_s": self.total_time,
        }


class PerformanceProfiler:
    """Named timing stats for pipeline stages."""

    def __init__(self):
        self.stats: Dict[str, TimingStats] = {}
        self._start_times: Dict[str, float] = {}

    @contextmanager
    def profile(self, operation_name: str):
        """Context manager for profiling an operation.

        Usage:
            with profiler.profile("inference"):
                raw = detector.infer(tensor)
        """
        start = time.time()
        try:
            yield
        finally:
            self.record(operation_name, time.time() - start)

    def start(self, operation_name: str):
        """Start timing an operation manually."""
        self._start_times[operation_name] = time.time()

    def stop(self, operation_name: str) -> Optional[float]:
        """Stop timing an operation started with start(); returns seconds."""
        started = self._start_times.pop(operation_name, None)
        if started is None:
            return None
        duration = time.time() - started
        self.record(operation_name, duration)
        return duration

    def record(self, operation_name: str, duration: float):
        """Record a timing sample.

        Args:
            operation_name: Name of the operation
            duration: Duration in seconds
        """
        if operation_name not in self.stats:
            self.stats[operation_name] = TimingStats(name=operation_name)
        self.stats[operation_name].add_sample(duration)

    def get_stats(self, operation_name: str) -> Optional[TimingStats]:
        return self.stats.get(operation_name)

    def get_summary(self) -> Dict[str, Dict]:
        return {name: stat.to_dict() for name, stat in self.stats.items()}

    def print_report(self):
        """Print a formatted performance report."""
        if not self.stats:
            print("No profiling data available")
            return

        print("\n" + "=" * 90)
        print("PERFORMANCE PROFILER REPORT")
        print("=" * 90)
        print(
            f"\n{'Operation':<24} {'Count':>8} {'Avg(ms)':>10} {'Med(ms)':>10} "
            f"{'P95(ms)':>10} {'Max(ms)':>10} {'Total(s)':>10}"
        )
        print("-" * 90)

        for stat in sorted(self.stats.values(), key=lambda s: s.total_time, reverse=True):
            print(
                f"{stat.name:<24} {stat.count:>8} "
                f"{stat.avg_time * 1000:>10.2f} {stat.median_time * 1000:>10.2f} "
                f"{stat.p95_time * 1000:>10.2f} {stat.max_time * 1000:>10.2f} "
                f"{stat.total_time:>10.2f}"
            )
        print("=" * 90 + "\n")

    def reset(self):
        self.stats.clear()
        self._start_times.clear()

    def export_json(self) -> dict:
        """Export statistics as JSON-serializable dict."""
        return {
            "operations": self.get_summary(),
            "total_operations": len(self.stats),
            "total_samples": sum(s.count for s in self.stats.values()),
        }


# Global profiler instance
profiler = PerformanceProfiler()
