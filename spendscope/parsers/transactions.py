"""Parser that turns extracted statement text into transaction entries.

Works line by line on text from either extraction path. A line becomes an
entry only when both a date and an amount are found on it; everything else
(headers, balances, wrapped descriptions, OCR noise) is dropped. Entries are
returned in source order.
"""

import re
from datetime import date

from spendscope.models import ParsedEntry
from spendscope.parsers.validation import (
    ParseResult,
    log_parse_result,
    normalize_description,
    parse_amount_safe,
)


class ParseError(Exception):
    """Raised when statement text is structurally invalid (missing or empty)."""

    pass


MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

MONTH_NAME = (
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Sept|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\.?"
)

ISO_DATE = re.compile(r"(?<!\d)(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?!\d)")
DOTTED_DATE = re.compile(r"(?<![\d.])(\d{1,2})\.(\d{1,2})\.(\d{4})(?!\d)")
NUMERIC_DATE = re.compile(r"(?<![\d/])(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})(?![\d/])")
DAY_MONTH_DATE = re.compile(rf"(?<!\d)(\d{{1,2}})[\s-]({MONTH_NAME})[\s,-]+(\d{{4}})(?!\d)", re.IGNORECASE)
MONTH_DAY_DATE = re.compile(rf"\b({MONTH_NAME})\s+(\d{{1,2}}),?\s+(\d{{4}})(?!\d)", re.IGNORECASE)
SHORT_DATE = re.compile(r"(?<![\d/.])(\d{1,2})/(\d{1,2})(?![\d/])")

AMOUNT = re.compile(
    r"""
    (?<![\w.,/])
    (?P<open>\()?
    (?P<lead>-)?
    (?:[$€£¥₹]|(?:USD|EUR|GBP|INR|CAD|AUD)\s?)?
    (?P<lead2>-)?
    (?P<number>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+\.\d{2})
    (?!\.?\d)
    (?P<close>\))?
    (?P<trail>-)?
    (?:\s?(?P<marker>CR|DR)\b)?
    """,
    re.VERBOSE | re.IGNORECASE,
)

DEBIT_WORDS = re.compile(r"\b(?:DEBIT|WITHDRAWAL|WITHDRAWL|WDL)\b", re.IGNORECASE)
# DR only counts as a column word right before the amount ("DR PEPPER" is a merchant)
DR_BEFORE_AMOUNT = re.compile(r"\bDR[\s:]*$", re.IGNORECASE)

COLUMN_WORDS_LEADING = re.compile(r"^(?:(?:DEBIT|CREDIT)\b[\s:]*)+", re.IGNORECASE)
COLUMN_WORDS_TRAILING = re.compile(r"(?:[\s:]*\b(?:DEBIT|CREDIT|DR|CR))+$", re.IGNORECASE)

# Card statements print a posting date right after the transaction date
POSTING_DATE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})(?:/(?:\d{4}|\d{2}))?(?![\d/])")

SKIP_LINE = re.compile(
    r"\b(?:OPENING|CLOSING|PREVIOUS|NEW|STARTING|ENDING|BEGINNING)\s+BALANCE\b"
    r"|\bBALANCE\s+(?:BROUGHT\s+|CARRIED\s+)?FORWARD\b"
    r"|^(?:SUB\s?)?TOTALS?\b"
    r"|\bTOTAL\s+(?:DEBITS|CREDITS|WITHDRAWALS|DEPOSITS|FEES|INTEREST|PAYMENTS|PURCHASES)\b"
    r"|\bPAGE\s+\d+\s+OF\s+\d+\b"
    r"|\bSTATEMENT\s+(?:DATE|PERIOD)\b"
    r"|\bPAYMENT\s+DUE\s+DATE\b"
    r"|\bMINIMUM\s+PAYMENT\b",
    re.IGNORECASE,
)

YEAR_PATTERNS = [
    r"Statement\s+Date[:\s]+\d{1,2}/\d{1,2}/(\d{4})",
    r"Statement\s+Period[:\s]+.*?(\d{4})",
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December)\s+(?:\d{1,2},?\s+)?(\d{4})",
    r"(\d{4})\s+Statement",
]


def _make_iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _expand_year(year: str) -> int:
    """Two-digit years follow strptime's %y rule (69-99 -> 1900s)."""
    value = int(year)
    if len(year) == 2:
        return value + (1900 if value >= 69 else 2000)
    return value


def _month_number(name: str) -> int:
    return MONTHS[name.rstrip(".")[:3].lower()]


def _convert_iso(match: re.Match, year_hint: int | None) -> str | None:
    return _make_iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def _convert_dotted(match: re.Match, year_hint: int | None) -> str | None:
    # DD.MM.YYYY
    return _make_iso(int(match.group(3)), int(match.group(2)), int(match.group(1)))


def _convert_numeric(match: re.Match, year_hint: int | None) -> str | None:
    # MM/DD/YYYY first, DD/MM/YYYY when that is not a real date
    first, second = int(match.group(1)), int(match.group(2))
    year = _expand_year(match.group(3))
    return _make_iso(year, first, second) or _make_iso(year, second, first)


def _convert_day_month(match: re.Match, year_hint: int | None) -> str | None:
    return _make_iso(int(match.group(3)), _month_number(match.group(2)), int(match.group(1)))


def _convert_month_day(match: re.Match, year_hint: int | None) -> str | None:
    return _make_iso(int(match.group(3)), _month_number(match.group(1)), int(match.group(2)))


def _convert_short(match: re.Match, year_hint: int | None) -> str | None:
    month, day = int(match.group(1)), int(match.group(2))
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    if year_hint is None:
        # No year anywhere in the statement; keep the locale date as printed
        return match.group(0)
    return _make_iso(year_hint, month, day)


DATE_PATTERNS = [
    (ISO_DATE, _convert_iso),
    (DOTTED_DATE, _convert_dotted),
    (NUMERIC_DATE, _convert_numeric),
    (DAY_MONTH_DATE, _convert_day_month),
    (MONTH_DAY_DATE, _convert_month_day),
    (SHORT_DATE, _convert_short),
]

FULL_DATE_PATTERNS = [ISO_DATE, DOTTED_DATE, NUMERIC_DATE, DAY_MONTH_DATE, MONTH_DAY_DATE]


def extract_statement_year(text: str) -> int | None:
    """Find the statement year, used to complete MM/DD dates."""
    for pattern in YEAR_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            year = int(match.group(1))
            if 1970 <= year <= 2100:
                return year
    return None


def find_date(line: str, year_hint: int | None = None) -> tuple[str, int, int] | None:
    """
    Locate the first date on a line.

    Returns:
        (normalized date, start, end) or None. When two formats match at the
        same position the longer match wins.
    """
    best: tuple[str, int, int] | None = None
    for pattern, convert in DATE_PATTERNS:
        for match in pattern.finditer(line):
            value = convert(match, year_hint)
            if value is None:
                continue
            start, end = match.span()
            if best is None or start < best[1] or (start == best[1] and end > best[2]):
                best = (value, start, end)
            break
    return best


def find_amount(text: str) -> re.Match | None:
    """Return the first amount token in a piece of text."""
    return AMOUNT.search(text)


def is_debit(amount: re.Match, body: str) -> bool:
    """
    Decide whether an amount is money going out.

    ``body`` is the line text leading up to the amount, without the date.
    """
    if amount.group("open") and amount.group("close"):
        return True
    if amount.group("lead") or amount.group("lead2") or amount.group("trail"):
        return True

    marker = (amount.group("marker") or "").upper()
    if marker == "DR":
        return True
    if marker == "CR":
        return False

    return bool(DEBIT_WORDS.search(body) or DR_BEFORE_AMOUNT.search(body))


def _clean_description(text: str) -> str:
    for pattern in FULL_DATE_PATTERNS:
        text = pattern.sub(" ", text)
    text = AMOUNT.sub(" ", text)
    text = normalize_description(text)
    text = COLUMN_WORDS_LEADING.sub("", text)
    text = COLUMN_WORDS_TRAILING.sub("", text)
    return normalize_description(text)


def _strip_posting_date(text: str) -> str:
    match = POSTING_DATE.match(text)
    if match is None:
        return text
    first, second = int(match.group(1)), int(match.group(2))
    if not (1 <= min(first, second) and max(first, second) <= 31 and min(first, second) <= 12):
        return text
    return text[match.end() :]


def parse_line(line: str, year_hint: int | None = None) -> ParsedEntry | None:
    """
    Parse one normalized line.

    Returns None when the line is not a transaction.

    Raises:
        ValueError: If the line has a date and an amount but the amount is unusable
    """
    found = find_date(line, year_hint)
    if found is None:
        return None
    entry_date, start, end = found

    before, after = line[:start], _strip_posting_date(line[end:])
    amount = find_amount(after)
    if amount is not None:
        body = before + " " + after[: amount.start()]
        description = _clean_description(body)
        if not description:
            description = _clean_description(after[amount.end() :])
    else:
        amount = find_amount(before)
        if amount is None:
            return None
        body = before[: amount.start()]
        description = _clean_description(body + " " + after)

    value, ok = parse_amount_safe(amount.group("number"))
    if not ok:
        raise ValueError(f"Unusable amount {amount.group(0).strip()!r}")

    return ParsedEntry(
        date=entry_date,
        value=abs(value),
        is_expense=is_debit(amount, body),
        description=description,
    )


def parse_transactions(text: str, year_hint: int | None = None) -> list[ParsedEntry]:
    """
    Parse statement text into entries.

    Args:
        text: Raw text from an extraction path
        year_hint: Year used for MM/DD dates (detected from the text if omitted)

    Returns:
        Entries in source line order. Empty when nothing was recognized.

    Raises:
        ParseError: If text is missing, not a string, or blank
    """
    if text is None or not isinstance(text, str):
        raise ParseError("Statement text is missing")
    if not text.strip():
        raise ParseError("Statement text is empty")

    year = year_hint or extract_statement_year(text)
    result = ParseResult(entries=[])
    if year is None:
        result.warnings.append("No statement year found; year-less dates kept as printed")

    for raw_line in re.split(r"\r\n|\r|\n", text):
        line = " ".join(raw_line.split())
        if not line:
            continue
        result.total_lines_processed += 1

        if SKIP_LINE.search(line):
            result.headers_skipped += 1
            continue

        try:
            entry = parse_line(line, year)
        except ValueError as e:
            result.errors.append(f"Line {result.total_lines_processed}: {e}")
            result.lines_skipped += 1
            continue

        if entry is None:
            result.lines_skipped += 1
            continue

        result.entries.append(entry)

    log_parse_result(result, "Statement text")

    return result.entries
