# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Stage timer for the reconciliation pipeline.

Created before the first await so it survives cancellation and can still
explain where a run stalled when the caller gives up on it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

_HINTS = {
    "render": "Page may be slow to load or keep long-polling connections open.",
    "extract_dom": "Markup is very large. Structure extraction is CPU-bound.",
    "screenshot": "Lazy-loaded content or a full-page capture is slow. Try fullPage=false or a smaller waitMs.",
    "vision_request": "Vision model is slow to answer. Try a smaller viewport or a faster model.",
    "merge_request": "Merge call is slow to answer. The prompt carries both structures; try a faster model.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Record stage transitions; one stage is open at a time."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """Close the open stage (if any) and open *name*."""
        now = time.monotonic_ns()
        self._close(now)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """Close the open stage. Safe to call more than once."""
        self._close(time.monotonic_ns())

    def _close(self, now: int) -> None:
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage: elapsed_ms}, the open stage measured up to now."""
        result = {s.name: s.elapsed_ms for s in self._stages}
        if self._current is not None:
            result[self._current.name] = round((time.monotonic_ns() - self._current.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        """Where a run was when it was abandoned."""
        now = time.monotonic_ns()
        current = self.current_stage or "unknown"
        return {
            "error": "timeout",
            "completed_stages": [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages],
            "timed_out_at": current,
            "timed_out_stage_ms": round((now - self._current.start_ns) / 1e6, 1) if self._current else 0,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _HINTS.get(stage, f"Timed out during '{stage}' stage.")
