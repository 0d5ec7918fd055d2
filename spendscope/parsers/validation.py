"""Amount cleaning, sanity checks and parse bookkeeping for statement text."""

import logging
import math
import re
from dataclasses import dataclass, field

from spendscope.models import ParsedEntry

# Shared by every parser module
logger = logging.getLogger("spendscope.parsers")

MAX_ABS_AMOUNT = 1_000_000_000

CURRENCY_TOKENS = re.compile(r"[$€£¥₹\s]|USD|EUR|GBP|INR|CAD|AUD")


@dataclass
class ParseResult:
    """Entries pulled from one text plus counters for the log line."""

    entries: list[ParsedEntry]
    total_lines_processed: int = 0
    lines_skipped: int = 0
    headers_skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percentage of non-blank lines that became entries."""
        if self.total_lines_processed == 0:
            return 0.0
        return (len(self.entries) / self.total_lines_processed) * 100


def validate_amount(amount: float | None) -> bool:
    """True for a finite amount no larger than a billion either way."""
    if amount is None or not math.isfinite(amount):
        return False
    return -MAX_ABS_AMOUNT <= amount <= MAX_ABS_AMOUNT


def clean_amount_string(amount_str: str) -> str:
    """
    Reduce an amount token to something ``float()`` accepts.

    Currency symbols, ISO codes, whitespace and thousands separators are
    dropped. ``(12.00)`` and ``12.00-`` both become ``-12.00``.
    """
    if not amount_str:
        return "0"

    cleaned = CURRENCY_TOKENS.sub("", amount_str.upper()).replace(",", "")

    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = "-" + cleaned[1:-1].lstrip("-")
    if cleaned.endswith("-"):
        cleaned = "-" + cleaned[:-1]

    return cleaned


def parse_amount_safe(amount_str: str, default: float = 0.0) -> tuple[float, bool]:
    """
    Parse an amount token without raising.

    Returns:
        (amount, True) on success, (default, False) otherwise
    """
    cleaned = clean_amount_string(amount_str)
    if cleaned in ("", "-"):
        return default, False
    try:
        amount = float(cleaned)
    except ValueError:
        return default, False
    if not validate_amount(amount):
        return default, False
    return amount, True


def normalize_description(description: str) -> str:
    """Collapse whitespace and trim column separators from both ends."""
    if not description:
        return ""
    return " ".join(description.split()).strip(" |:;-*")


def log_parse_result(result: ParseResult, source: str) -> None:
    """Log one summary line, then the first few errors and warnings."""
    logger.info(
        f"{source}: parsed {len(result.entries)} entries from {result.total_lines_processed} lines "
        f"({result.success_rate:.0f}%), skipped {result.lines_skipped}, headers {result.headers_skipped}"
    )

    for error in result.errors[:5]:
        logger.warning(f"{source}: {error}")

    for warning in result.warnings[:5]:
        logger.debug(f"{source}: {warning}")
