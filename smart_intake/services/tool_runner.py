# smart_intake/services/tool_runner.py
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Callable, Optional, Sequence

from ..domain.errors import ToolExecutionFailure
from ..domain.pipeline_types import ToolResult
from ..domain.tools import DEFAULT_TOOLS, ToolFn, ToolInputs
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)

ResultCallback = Callable[[ToolResult], None]


class ToolRunner:
    """
    Runs every registered tool as an unordered batch. A tool that raises
    becomes a `failed` ToolResult; the others are unaffected.
    """

    def __init__(self, tools: Sequence[tuple[str, str, ToolFn]] = DEFAULT_TOOLS) -> None:
        self.tools = tuple(tools)

    async def _run_one(
        self,
        name: str,
        label: str,
        fn: ToolFn,
        inputs: ToolInputs,
        on_result: Optional[ResultCallback],
        session_id: Optional[str],
    ) -> ToolResult:
        try:
            out = fn(inputs)
            if inspect.isawaitable(out):
                out = await out
            result = out
        except Exception as e:
            failure = ToolExecutionFailure(name, str(e) or type(e).__name__, e)
            METRICS.inc("tools_failed")
            log.warning(
                "tool_failed",
                exc_info=True,
                extra={"tool_name": name, "session_id": session_id},
            )
            result = ToolResult(tool_name=name, tool_label=label, status="failed", reason=str(failure))

        if on_result is not None:
            on_result(result)
        return result

    async def run(
        self,
        inputs: ToolInputs,
        *,
        on_result: Optional[ResultCallback] = None,
        session_id: Optional[str] = None,
    ) -> list[ToolResult]:
        """Results come back in registration order; `on_result` fires in completion order."""
        return list(
            await asyncio.gather(
                *(self._run_one(name, label, fn, inputs, on_result, session_id) for name, label, fn in self.tools)
            )
        )
