"""Tests for the parser validation module."""

from spendscope.parsers.validation import (
    ParseResult,
    clean_amount_string,
    normalize_description,
    parse_amount_safe,
    validate_amount,
)


class TestValidateAmount:
    """Test amount validation."""

    def test_accepts_normal_amounts(self):
        """Should accept ordinary amounts."""
        assert validate_amount(100.0)
        assert validate_amount(-50.5)
        assert validate_amount(0.0)

    def test_rejects_none(self):
        """Should reject None."""
        assert not validate_amount(None)

    def test_rejects_nan_and_infinity(self):
        """Should reject non-finite values."""
        assert not validate_amount(float("nan"))
        assert not validate_amount(float("inf"))
        assert not validate_amount(float("-inf"))

    def test_rejects_out_of_range(self):
        """Should reject amounts beyond the bounds."""
        assert not validate_amount(5_000_000_000.0)


class TestCleanAmountString:
    """Test amount string cleaning."""

    def test_removes_symbol_and_separators(self):
        """Should strip $ and thousands separators."""
        assert clean_amount_string("$1,234.56") == "1234.56"

    def test_removes_currency_codes(self):
        """Should strip ISO codes and other symbols."""
        assert clean_amount_string("USD 5.00") == "5.00"
        assert clean_amount_string("€ 12.00") == "12.00"

    def test_parentheses_become_negative(self):
        """Should convert (x) to -x."""
        assert clean_amount_string("(50.00)") == "-50.00"

    def test_trailing_minus(self):
        """Should move a trailing minus to the front."""
        assert clean_amount_string("50.00-") == "-50.00"

    def test_empty(self):
        """Should return 0 for empty input."""
        assert clean_amount_string("") == "0"


class TestParseAmountSafe:
    """Test safe amount parsing."""

    def test_parses_valid_amount(self):
        """Should parse and flag success."""
        assert parse_amount_safe("$1,000.25") == (1000.25, True)

    def test_invalid_returns_default(self):
        """Should return the default and a failure flag."""
        assert parse_amount_safe("abc") == (0.0, False)
        assert parse_amount_safe("-", default=-1.0) == (-1.0, False)

    def test_infinite_rejected(self):
        """Should refuse infinity."""
        assert parse_amount_safe("inf") == (0.0, False)


class TestNormalizeDescription:
    """Test description normalization."""

    def test_collapses_whitespace(self):
        """Should collapse runs of whitespace."""
        assert normalize_description("  Coffee    Shop  ") == "Coffee Shop"

    def test_strips_column_separators(self):
        """Should strip separators left at the edges."""
        assert normalize_description("| Coffee Shop - ") == "Coffee Shop"

    def test_empty(self):
        """Should handle empty input."""
        assert normalize_description("") == ""


class TestParseResult:
    """Test ParseResult bookkeeping."""

    def test_success_rate(self):
        """Should compute the share of lines that became entries."""
        result = ParseResult(entries=[1, 2], total_lines_processed=4)
        assert result.success_rate == 50.0

    def test_success_rate_with_no_lines(self):
        """Should be 0 when nothing was processed."""
        assert ParseResult(entries=[]).success_rate == 0.0
