# tests/test_tool_runner.py
from __future__ import annotations

import asyncio

from smart_intake.domain.pipeline_types import ToolResult
from smart_intake.domain.tools import (
    DEFAULT_TOOLS,
    ToolInputs,
    cap_rate,
    debt_service,
    price_per_bed,
    pro_forma,
    sensitivity,
)
from smart_intake.services.runtime_metrics import METRICS
from smart_intake.services.tool_runner import ToolRunner

FULL = ToolInputs(
    asset_type="SNF",
    beds=120,
    noi=900_000,
    asking_price=9_000_000,
    total_revenue=6_000_000,
    total_expenses=5_100_000,
)


def test_cap_rate_within_snf_band():
    r = cap_rate(FULL)
    assert r.status == "success"
    assert r.result["capRate"] == 10.0
    assert r.result["isWithinRange"] is True
    assert "within SNF range" in r.result["headline"]


def test_tools_skip_without_inputs():
    empty = ToolInputs(asset_type="SNF", beds=0)
    results = [fn(empty) for _, _, fn in DEFAULT_TOOLS]
    assert all(r.status == "skipped" and r.reason for r in results)


def test_debt_service_and_price_per_bed_report_headlines():
    for fn in (debt_service, price_per_bed, sensitivity, pro_forma):
        r = fn(FULL)
        assert r.status == "success", r.tool_name
        assert r.result["headline"]


def test_pro_forma_projects_five_years():
    r = pro_forma(FULL)
    years = [p["year"] for p in r.result["projections"]]
    assert years == [1, 2, 3, 4, 5]
    assert r.result["baseNoi"] == 900_000


def test_failing_tool_is_isolated():
    def boom(_inp: ToolInputs) -> ToolResult:
        raise RuntimeError("division by zero in model")

    tools = (
        ("cap_rate", "Cap Rate Calculator", cap_rate),
        ("boom", "Exploding Tool", boom),
        ("pro_forma", "Pro Forma Projection", pro_forma),
    )
    seen: list[str] = []
    before = METRICS.get("tools_failed")

    results = asyncio.run(ToolRunner(tools).run(FULL, on_result=lambda r: seen.append(r.tool_name)))

    assert [r.tool_name for r in results] == ["cap_rate", "boom", "pro_forma"]
    assert [r.status for r in results] == ["success", "failed", "success"]
    assert results[1].reason == "division by zero in model"
    assert sorted(seen) == ["boom", "cap_rate", "pro_forma"]
    assert METRICS.get("tools_failed") == before + 1


def test_async_tools_are_awaited():
    async def slow(_inp: ToolInputs) -> ToolResult:
        await asyncio.sleep(0)
        return ToolResult(tool_name="slow", tool_label="Slow", status="success", result={"headline": "ok"})

    (r,) = asyncio.run(ToolRunner((("slow", "Slow", slow),)).run(FULL))
    assert r.status == "success"
