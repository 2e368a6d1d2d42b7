# smart_intake/domain/tools.py
"""
Financial calculators for the Tools phase.

Each tool takes ToolInputs and returns a ToolResult: `success` with a
`headline`, or `skipped` with a reason when its inputs are missing. The
async runner that isolates failures lives in services/tool_runner.py.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from .pipeline_types import ExtractedDealData, FinancialPeriod, ToolResult


@dataclass(frozen=True)
class ToolInputs:
    asset_type: str
    beds: int
    noi: Optional[float] = None
    asking_price: Optional[float] = None
    total_revenue: Optional[float] = None
    total_expenses: Optional[float] = None
    occupancy: Optional[float] = None
    periods: tuple[FinancialPeriod, ...] = field(default_factory=tuple)

    @classmethod
    def from_deal_data(cls, data: ExtractedDealData) -> "ToolInputs":
        fin = data.financials
        return cls(
            asset_type=data.suggested_asset_type or "SNF",
            beds=data.total_beds(),
            noi=fin.noi,
            asking_price=fin.asking_price,
            total_revenue=fin.total_revenue,
            total_expenses=fin.total_expenses,
            occupancy=data.operating_metrics.occupancy_rate,
            periods=tuple(fin.periods),
        )


CAP_RATE_BENCHMARKS: dict[str, dict[str, float]] = {
    "SNF": {"min": 7.5, "max": 12.5, "median": 10.0},
    "ALF": {"min": 5.5, "max": 7.5, "median": 6.5},
    "ILF": {"min": 5.0, "max": 6.5, "median": 5.75},
    "HOSPICE": {"min": 9.0, "max": 11.0, "median": 10.0},
}

PRICE_PER_BED_BENCHMARKS: dict[str, dict[str, float]] = {
    "SNF": {"low": 40_000, "mid": 75_000, "high": 120_000},
    "ALF": {"low": 75_000, "mid": 125_000, "high": 200_000},
    "ILF": {"low": 80_000, "mid": 150_000, "high": 250_000},
    "HOSPICE": {"low": 30_000, "mid": 60_000, "high": 100_000},
}

DEBT_LTV = 0.70
DEBT_INTEREST_RATE = 0.065
DEBT_AMORTIZATION_YEARS = 25
HEALTHY_DSCR = 1.25

SENSITIVITY_CAP_RATES = (7, 8, 9, 10, 11, 12, 13)
SENSITIVITY_NOI_DELTAS = (-20, -10, -5, 0, 5, 10, 20)

PRO_FORMA_REVENUE_GROWTH = 0.03
PRO_FORMA_EXPENSE_GROWTH = 0.035  # labor pressure
PRO_FORMA_YEARS = 5


def _monthly_mortgage_payment(principal: float, annual_rate: float, term_years: int) -> float:
    if principal <= 0 or term_years <= 0:
        return 0.0
    r = annual_rate / 12.0
    n = term_years * 12
    if r <= 0:
        return principal / n
    return principal * (r * (1 + r) ** n) / ((1 + r) ** n - 1)


def _finite(x: float, *, fallback: float) -> float:
    if x is None:
        return fallback
    if isinstance(x, float) and (math.isnan(x) or math.isinf(x)):
        return fallback
    return float(x)


def _skipped(name: str, label: str, reason: str) -> ToolResult:
    return ToolResult(tool_name=name, tool_label=label, status="skipped", reason=reason)


def cap_rate(inp: ToolInputs) -> ToolResult:
    name, label = "cap_rate", "Cap Rate Calculator"
    if not inp.noi or not inp.asking_price or inp.asking_price <= 0:
        return _skipped(name, label, "Missing NOI or asking price")

    rate = float(inp.noi) / float(inp.asking_price) * 100.0
    benchmark = CAP_RATE_BENCHMARKS.get(inp.asset_type, CAP_RATE_BENCHMARKS["SNF"])
    within = benchmark["min"] <= rate <= benchmark["max"]

    return ToolResult(
        tool_name=name,
        tool_label=label,
        status="success",
        result={
            "capRate": round(rate, 2),
            "noi": inp.noi,
            "value": inp.asking_price,
            "benchmark": dict(benchmark),
            "isWithinRange": within,
            "headline": f"Cap rate: {rate:.2f}% ({'within' if within else 'outside'} {inp.asset_type} range)",
        },
    )


def debt_service(inp: ToolInputs) -> ToolResult:
    name, label = "debt_service", "Debt Service Analysis"
    if not inp.noi or not inp.asking_price or inp.asking_price <= 0:
        return _skipped(name, label, "Missing NOI or asking price")

    loan_amount = float(inp.asking_price) * DEBT_LTV
    monthly = _monthly_mortgage_payment(loan_amount, DEBT_INTEREST_RATE, DEBT_AMORTIZATION_YEARS)
    annual_debt_service = monthly * 12.0

    # clamp instead of infinity
    dscr = float(inp.noi) / annual_debt_service if annual_debt_service > 1e-6 else 999.0
    dscr = _finite(dscr, fallback=0.0)
    healthy = dscr >= HEALTHY_DSCR

    return ToolResult(
        tool_name=name,
        tool_label=label,
        status="success",
        result={
            "loanAmount": round(loan_amount),
            "ltv": DEBT_LTV,
            "interestRate": DEBT_INTEREST_RATE,
            "amortizationYears": DEBT_AMORTIZATION_YEARS,
            "annualDebtService": round(annual_debt_service),
            "dscr": round(dscr, 2),
            "isHealthy": healthy,
            "headline": (
                f"DSCR: {dscr:.2f}x at {DEBT_LTV * 100:.0f}% LTV "
                f"({'healthy' if healthy else f'below {HEALTHY_DSCR:.2f}x target'})"
            ),
        },
    )


def price_per_bed(inp: ToolInputs) -> ToolResult:
    name, label = "price_per_bed", "Price Per Bed"
    if not inp.asking_price or not inp.beds or inp.beds <= 0:
        return _skipped(name, label, "Missing asking price or bed count")

    ppb = float(inp.asking_price) / int(inp.beds)
    benchmark = PRICE_PER_BED_BENCHMARKS.get(inp.asset_type, PRICE_PER_BED_BENCHMARKS["SNF"])
    if ppb <= benchmark["low"]:
        position = "below market"
    elif ppb >= benchmark["high"]:
        position = "above market"
    else:
        position = "within market"

    return ToolResult(
        tool_name=name,
        tool_label=label,
        status="success",
        result={
            "pricePerBed": round(ppb),
            "beds": inp.beds,
            "askingPrice": inp.asking_price,
            "benchmark": dict(benchmark),
            "position": position,
            "headline": f"${round(ppb / 1000)}K/bed, {position} range for {inp.asset_type}",
        },
    )


def sensitivity(inp: ToolInputs) -> ToolResult:
    name, label = "sensitivity", "Sensitivity Analysis"
    if not inp.noi or not inp.asking_price or inp.asking_price <= 0:
        return _skipped(name, label, "Missing NOI or asking price")

    noi = float(inp.noi)
    price = float(inp.asking_price)

    cap_rows = []
    for cr in SENSITIVITY_CAP_RATES:
        implied = noi / (cr / 100.0)
        cap_rows.append(
            {
                "capRate": cr,
                "impliedValue": round(implied),
                "delta": round(implied - price),
                "deltaPercent": round((implied - price) / price * 100.0),
            }
        )

    base_cap_rate = noi / price * 100.0
    noi_rows = []
    for delta in SENSITIVITY_NOI_DELTAS:
        adjusted = noi * (1 + delta / 100.0)
        noi_rows.append(
            {
                "noiDelta": delta,
                "adjustedNoi": round(adjusted),
                "impliedCapRate": round(adjusted / price * 100.0, 2),
                "impliedValue": round(adjusted / (base_cap_rate / 100.0)),
            }
        )

    low_m = round(cap_rows[-1]["impliedValue"] / 1_000_000)
    high_m = round(cap_rows[0]["impliedValue"] / 1_000_000)
    return ToolResult(
        tool_name=name,
        tool_label=label,
        status="success",
        result={
            "capRateSensitivity": cap_rows,
            "noiSensitivity": noi_rows,
            "baseCapRate": round(base_cap_rate, 2),
            "baseNoi": noi,
            "headline": f"Sensitivity matrix: value ranges ${low_m}M to ${high_m}M",
        },
    )


def pro_forma(inp: ToolInputs) -> ToolResult:
    name, label = "pro_forma", "Pro Forma Projection"
    if not inp.periods and not inp.total_revenue:
        return _skipped(name, label, "No financial period data available")

    last = inp.periods[-1] if inp.periods else None
    base_revenue = float(inp.total_revenue or (last.revenue if last else 0.0) or 0.0)
    if inp.total_expenses:
        base_expenses = float(inp.total_expenses)
    elif inp.total_revenue and inp.noi:
        base_expenses = float(inp.total_revenue) - float(inp.noi)
    elif last is not None:
        base_expenses = float(last.revenue) - float(last.noi)
    else:
        base_expenses = 0.0

    if base_revenue <= 0:
        return _skipped(name, label, "Revenue data is zero or unavailable")

    projections = []
    for year in range(1, PRO_FORMA_YEARS + 1):
        revenue = base_revenue * (1 + PRO_FORMA_REVENUE_GROWTH) ** year
        expenses = base_expenses * (1 + PRO_FORMA_EXPENSE_GROWTH) ** year
        noi = revenue - expenses
        projections.append(
            {
                "year": year,
                "revenue": round(revenue),
                "expenses": round(expenses),
                "noi": round(noi),
                "noiMargin": round(noi / revenue * 100.0, 2),
            }
        )

    final = projections[-1]
    return ToolResult(
        tool_name=name,
        tool_label=label,
        status="success",
        result={
            "baseRevenue": round(base_revenue),
            "baseExpenses": round(base_expenses),
            "baseNoi": round(base_revenue - base_expenses),
            "assumptions": {"revenueGrowth": PRO_FORMA_REVENUE_GROWTH, "expenseGrowth": PRO_FORMA_EXPENSE_GROWTH},
            "projections": projections,
            "headline": f"Year {PRO_FORMA_YEARS} NOI: ${round(final['noi'] / 1000)}K ({final['noiMargin']}% margin)",
        },
    )


ToolFn = Callable[[ToolInputs], ToolResult]

# (name, label, fn) in run order
DEFAULT_TOOLS: tuple[tuple[str, str, ToolFn], ...] = (
    ("cap_rate", "Cap Rate Calculator", cap_rate),
    ("debt_service", "Debt Service Analysis", debt_service),
    ("price_per_bed", "Price Per Bed", price_per_bed),
    ("sensitivity", "Sensitivity Analysis", sensitivity),
    ("pro_forma", "Pro Forma Projection", pro_forma),
)
