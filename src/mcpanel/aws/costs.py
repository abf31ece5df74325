from datetime import date, timedelta

import boto3

from mcpanel.control.state import CostLine, CostSummary


PERIODS = ("current-month", "last-month", "last-30-days")
COST_EXPLORER_REGION = "us-east-1"


def period_range(period: str, today: date | None = None) -> tuple[date, date]:
    """Return (start, end) dates for a named billing period."""
    today = today or date.today()
    if period == "current-month":
        return today.replace(day=1), today
    if period == "last-month":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    if period == "last-30-days":
        return today - timedelta(days=30), today
    raise ValueError(f"Unknown cost period: {period}")


def summarize_costs(response: dict, start: date, end: date) -> CostSummary:
    """Collapse a GetCostAndUsage response grouped by SERVICE into a CostSummary."""
    breakdown = []
    total = 0.0
    currency = "USD"
    for result in response.get("ResultsByTime", []):
        for group in result.get("Groups", []):
            keys = group.get("Keys") or ["Unknown"]
            metric = group.get("Metrics", {}).get("UnblendedCost", {})
            amount = float(metric.get("Amount", "0") or 0)
            currency = metric.get("Unit", currency)
            if amount > 0:
                breakdown.append(CostLine(service=keys[0], cost=f"{amount:.2f}"))
                total += amount
    breakdown.sort(key=lambda line: float(line.cost), reverse=True)
    return CostSummary(
        period_start=start.isoformat(), period_end=end.isoformat(),
        total_cost=f"{total:.2f}", currency=currency, breakdown=breakdown,
    )


def get_costs(period: str = "current-month", today: date | None = None) -> CostSummary:
    start, end = period_range(period, today)
    ce = boto3.client("ce", region_name=COST_EXPLORER_REGION)
    response = ce.get_cost_and_usage(
        TimePeriod={"Start": start.isoformat(), "End": end.isoformat()},
        Granularity="MONTHLY",
        Metrics=["UnblendedCost"],
        GroupBy=[{"Type": "DIMENSION", "Key": "SERVICE"}],
    )
    return summarize_costs(response, start, end)
