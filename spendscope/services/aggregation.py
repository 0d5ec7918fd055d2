"""Aggregation of parsed statements into dashboard metrics.

Everything here is a pure function of its input: no I/O, no mutation of the
groups passed in, and every sum runs over the same date-sorted sequence so
repeated calls give identical floats.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from spendscope.models import AggregateSnapshot, ParsedStatementGroup, ParseOutcome, TopExpense

UNKNOWN_DESCRIPTION = "(unknown)"
TOP_EXPENSES_LIMIT = 5

# Accepted in addition to ISO-8601
DATE_FORMATS = [
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
]


@dataclass(frozen=True)
class FlatEntry:
    """A parsed entry flattened out of its statement, ready for aggregation."""

    date: str
    time: float  # POSIX seconds; 0 when the date could not be read
    value: float
    signed: float
    is_expense: bool
    description: str
    statement_name: str


@dataclass(frozen=True)
class GroupSummary:
    """Per-statement line for the dashboard listing."""

    statement_id: str
    statement_name: str
    outcome: ParseOutcome
    entry_count: int

    @property
    def label(self) -> str:
        if self.outcome == ParseOutcome.NOT_RUN:
            return "No parsed data"
        return f"{self.entry_count} entries"


def date_to_time(value: str) -> float:
    """
    Convert an entry date to POSIX seconds (UTC).

    Unreadable dates map to 0 so they sort as the earliest entries.
    """
    if not value or not isinstance(value, str):
        return 0.0
    text = value.strip()

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.timestamp()
    except (OverflowError, OSError, ValueError):
        return 0.0


def _finite(value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def flatten_entries(groups: list[ParsedStatementGroup]) -> list[FlatEntry]:
    """
    Flatten every group's entries and sort them by date.

    Groups that were never parsed are skipped. The sort is stable, so entries
    with the same date (or unreadable dates) keep their statement order.
    """
    entries: list[FlatEntry] = []
    for group in groups or []:
        if group.parsed is None:
            continue
        for entry in group.parsed:
            value = _finite(entry.value)
            signed = -abs(value) if entry.is_expense else value
            entries.append(
                FlatEntry(
                    date=entry.date,
                    time=date_to_time(entry.date),
                    value=value,
                    signed=signed,
                    is_expense=bool(entry.is_expense),
                    description=entry.description,
                    statement_name=group.statement_name,
                )
            )

    entries.sort(key=lambda e: e.time)
    return entries


def top_expenses(entries: list[FlatEntry], limit: int = TOP_EXPENSES_LIMIT) -> list[TopExpense]:
    """Sum expenses per description and return the largest buckets."""
    # dict keeps first-seen order, which breaks ties in the stable sort below
    buckets: dict[str, float] = {}
    for entry in entries:
        if not entry.is_expense:
            continue
        key = entry.description or UNKNOWN_DESCRIPTION
        buckets[key] = buckets.get(key, 0.0) + entry.value

    ranked = sorted(buckets.items(), key=lambda item: item[1], reverse=True)
    return [TopExpense(desc=desc, amt=amt) for desc, amt in ranked[:limit]]


def running_balance(entries: list[FlatEntry]) -> list[float]:
    """Cumulative signed total after each entry."""
    balance: list[float] = []
    total = 0.0
    for entry in entries:
        total += entry.signed
        balance.append(total)
    return balance


def build_snapshot(groups: list[ParsedStatementGroup]) -> AggregateSnapshot:
    """Compute dashboard metrics from every parsed statement."""
    entries = flatten_entries(groups)

    total_signed = 0.0
    income = 0.0
    expenses = 0.0
    biggest = 0.0
    for entry in entries:
        total_signed += entry.signed
        if entry.signed > 0:
            income += entry.signed
        elif entry.signed < 0:
            expenses += entry.signed
        if entry.is_expense and entry.value > biggest:
            biggest = entry.value

    return AggregateSnapshot(
        total_signed=total_signed,
        total_income=income,
        total_expenses=abs(expenses),
        biggest_expense=biggest,
        top_expenses=top_expenses(entries),
        running_balance=running_balance(entries),
    )


def summarize_groups(groups: list[ParsedStatementGroup]) -> list[GroupSummary]:
    """Statement-by-statement outcome and entry counts."""
    return [
        GroupSummary(
            statement_id=group.statement_id,
            statement_name=group.statement_name,
            outcome=group.outcome,
            entry_count=len(group.parsed or []),
        )
        for group in groups or []
    ]
