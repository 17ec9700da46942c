"""
In-process counters for the Spendgate API, served at ``/metrics``.
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List

_WINDOW = 1000

_metrics: Dict[str, Any] = {}


def reset_metrics():
    """Reset all metrics (for testing)."""
    global _metrics
    _metrics = {
        "requests": defaultdict(int),
        "statuses": defaultdict(int),
        "errors": defaultdict(int),
        "reports": defaultdict(int),
        "rule_changes": defaultdict(int),
        "response_times": [],
        "report_times": [],
        "start_time": datetime.now(timezone.utc),
    }


reset_metrics()


def _remember(series: List[float], value: float) -> None:
    series.append(value)
    if len(series) > _WINDOW:
        del series[:-_WINDOW]


def _percentile(series: List[float], fraction: float, minimum: int) -> float:
    if len(series) < minimum:
        return 0
    return sorted(series)[int(len(series) * fraction)]


def record_request(method: str, path: str, status_code: int, duration_ms: float):
    _metrics["requests"][f"{method} {path}"] += 1
    _metrics["statuses"][f"status_{status_code}"] += 1
    _remember(_metrics["response_times"], duration_ms)


def record_error(error_type: str, path: str = ""):
    _metrics["errors"][error_type] += 1
    if path:
        _metrics["errors"][f"{error_type}:{path}"] += 1


def record_report_build(status: str, projects: int = 0, duration_ms: float = 0.0):
    """Count a report outcome: "built", "preview" or "failed"."""
    _metrics["reports"][status] += 1
    if projects:
        _metrics["reports"]["project_rows"] += projects
    if status != "failed":
        _remember(_metrics["report_times"], duration_ms)


def record_rule_change(action: str, scope: str):
    """Count a rule write, e.g. ("upsert", "global")."""
    _metrics["rule_changes"][f"{scope}:{action}"] += 1


def get_metrics() -> Dict[str, Any]:
    response_times = _metrics["response_times"]
    report_times = _metrics["report_times"]
    uptime_seconds = (datetime.now(timezone.utc) - _metrics["start_time"]).total_seconds()

    return {
        "uptime_seconds": int(uptime_seconds),
        "uptime_human": _format_uptime(uptime_seconds),
        "requests": {
            "total": sum(_metrics["requests"].values()),
            "by_endpoint": dict(_metrics["requests"]),
            "by_status": dict(_metrics["statuses"]),
        },
        "errors": {
            "total": sum(v for k, v in _metrics["errors"].items() if ":" not in k),
            "by_type": dict(_metrics["errors"]),
        },
        "reports": dict(_metrics["reports"]),
        "rule_changes": dict(_metrics["rule_changes"]),
        "performance": {
            "avg_response_time_ms": round(sum(response_times) / len(response_times), 2) if response_times else 0,
            "p95_response_time_ms": round(_percentile(response_times, 0.95, 20), 2),
            "avg_report_time_ms": round(sum(report_times) / len(report_times), 2) if report_times else 0,
        },
    }


def _format_uptime(seconds: float) -> str:
    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"
