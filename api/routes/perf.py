from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from services.bus_finder import get_bus_finder
from services.detector.detector_factory import get_detector_info
from services.profiler import profiler

router = APIRouter()


@router.get("")
def pipeline_status():
    """Model readiness, scanning state, frame skip and engine stats."""
    bus_finder = get_bus_finder()
    if bus_finder is None:
        return {"status": "not-ready", "error": "pipeline not configured"}

    status = bus_finder.orchestrator.get_status()
    status["detector"] = get_detector_info(bus_finder.detector)
    status["ocr_warm"] = bus_finder.ocr_client.is_ready()
    return status


@router.get("/perf")
def perf_status():
    """Per-stage timing statistics (milliseconds)."""
    return {"ok": True, **profiler.export_json()}


@router.get("/perf/detailed", response_class=PlainTextResponse)
def detailed_perf_status():
    """Profiler statistics as a formatted text report."""
    stats = profiler.get_summary()
    if not stats:
        return "No profiling data available yet.\n"

    output = []
    output.append("=" * 90)
    output.append("PERFORMANCE PROFILER REPORT")
    output.append("=" * 90)
    output.append(
        f"\n{'Operation':<24} {'Count':>8} {'Avg(ms)':>10} {'Med(ms)':>10} "
        f"{'P95(ms)':>10} {'Max(ms)':>10} {'Total(s)':>10}"
    )
    output.append("-" * 90)

    for name, s in sorted(stats.items(), key=lambda x: x[1]["total_time_s"], reverse=True):
        output.append(
            f"{name:<24} {s['count']:>8} {s['avg_ms']:>10.2f} {s['median_ms']:>10.2f} "
            f"{s['p95_ms']:>10.2f} {s['max_ms']:>10.2f} {s['total_time_s']:>10.2f}"
        )
    output.append("=" * 90)
    return "\n".join(output) + "\n"
