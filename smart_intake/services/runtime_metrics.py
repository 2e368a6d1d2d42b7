# smart_intake/services/runtime_metrics.py
from __future__ import annotations

import threading
from typing import Optional

# name -> help line for the text exposition
COUNTERS: dict[str, str] = {
    "pipelines_started": "Pipeline runs accepted",
    "pipelines_completed": "Pipeline runs that reached pipeline_complete",
    "pipelines_failed": "Pipeline runs stopped by a phase failure",
    "pipelines_paused": "Times a run paused for clarification",
    "files_failed": "Uploaded files that could not be parsed",
    "tools_failed": "Financial tool executions that raised",
    "events_published": "Events appended to session channels",
}

COUNTER_NAMES = tuple(COUNTERS)


class _Metrics:
    """Process-wide monotonic counters; every declared counter reports from zero."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = dict.fromkeys(COUNTER_NAMES, 0)

    def inc(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(n)

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def render_text(self, gauges: Optional[dict[str, int]] = None) -> str:
        lines: list[str] = []
        for name, value in self.snapshot().items():
            if name in COUNTERS:
                lines.append(f"# HELP {name} {COUNTERS[name]}")
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")
        for name, value in (gauges or {}).items():
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {value}")
        return "\n".join(lines) + "\n"


METRICS = _Metrics()
