from __future__ import annotations

import os
import re
import threading
import time
from typing import Dict


_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)

_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


def metrics_enabled() -> bool:
    v = (os.environ.get("STAKEBANK_METRICS_ENABLED") or "").strip().lower()
    if not v:
        return False
    return v in {"1", "true", "yes", "y", "on"}


def _metric_name(name: str) -> str:
    return _NAME_RE.sub("_", str(name or "").strip())


def inc_counter(name: str, value: int = 1) -> None:
    n = _metric_name(name)
    if not n:
        return
    with _lock:
        _counters[n] = int(_counters.get(n, 0)) + int(value)


def set_gauge(name: str, value: int) -> None:
    n = _metric_name(name)
    if not n:
        return
    with _lock:
        _gauges[n] = int(value)


def record_outcome(op: str, code: str = "ok") -> None:
    """Count one allocator/ledger operation outcome, e.g. deposit_ok, withdraw_unauthorized."""
    inc_counter(f"{op}_{code}")


def snapshot() -> dict:
    with _lock:
        now_ms = int(time.time() * 1000)
        return {
            "ts_ms": now_ms,
            "started_ms": int(_started_ms),
            "uptime_ms": now_ms - int(_started_ms),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "stakebank_") -> str:
    """Prometheus exposition text (integer counters/gauges only)."""
    pre = str(prefix or "").strip() or "stakebank_"
    snap = snapshot()
    lines: list[str] = [f"{pre}uptime_ms {int(snap['uptime_ms'])}"]

    for name, v in sorted(snap["counters"].items()):
        lines.append(f"{pre}{name} {int(v)}")
    for name, v in sorted(snap["gauges"].items()):
        lines.append(f"{pre}{name} {int(v)}")

    return "\n".join(lines) + "\n"
