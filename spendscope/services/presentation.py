"""Turn aggregate metrics into simple chart primitives for the dashboard."""

from spendscope.models import TopExpense

SPARKLINE_WIDTH = 240
SPARKLINE_HEIGHT = 48


def sparkline_points(points: list[float], width: int = SPARKLINE_WIDTH, height: int = SPARKLINE_HEIGHT) -> str:
    """SVG polyline ``points`` attribute for a running-balance series."""
    if not points:
        return ""
    low = min(points)
    span = (max(points) - low) or 1
    step = width / max(len(points) - 1, 1)
    return " ".join(f"{i * step:g},{height - ((v - low) / span) * height:g}" for i, v in enumerate(points))


def percent_bar(income: float, expense: float) -> tuple[int, int]:
    """Income and expense shares of a 100% bar."""
    total = (income + expense) or 1
    income_pct = round(income / total * 100)
    return income_pct, 100 - income_pct


def top_expense_bars(items: list[TopExpense]) -> list[dict]:
    """Bar width (percent of the largest bucket) for each top expense."""
    if not items:
        return []
    largest = max(item.amt for item in items) or 1
    return [
        {"desc": item.desc, "amt": round(item.amt, 2), "width": round(item.amt / largest * 100, 2)}
        for item in items
    ]
