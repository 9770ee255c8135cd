"""
Unit tests for order totals and money helpers.
"""
import pytest

from models.purchase_order import LineInput
from procurement.totals import (
    build_line, compute_totals, format_money, line_amount, round_money, to_number,
)


@pytest.mark.unit
class TestToNumber:
    """Tests for lenient numeric coercion."""

    def test_numbers_pass_through(self):
        assert to_number(3) == 3.0
        assert to_number(2.5) == 2.5

    def test_strings_are_cleaned(self):
        assert to_number("12.50") == 12.5
        assert to_number("£1,234.50") == 1234.5
        assert to_number("-4") == -4.0

    def test_bad_input_is_zero(self):
        assert to_number(None) == 0.0
        assert to_number("") == 0.0
        assert to_number("abc") == 0.0
        assert to_number(float("nan")) == 0.0
        assert to_number(float("inf")) == 0.0
        assert to_number(True) == 0.0


@pytest.mark.unit
class TestRounding:
    def test_half_up(self):
        assert round_money(2.675) == 2.68
        assert round_money(0.125) == 0.13
        assert round_money(-1.005) == -1.01

    def test_format_money(self):
        assert format_money(1234.5) == "£1,234.50"
        assert format_money(-12) == "-£12.00"
        assert format_money("n/a", "$") == "$0.00"


@pytest.mark.unit
class TestComputeTotals:
    """Tests for net / VAT / gross calculation."""

    def test_quantity_times_rate(self):
        lines = [{"quantity": 2, "rate": 10.00}, {"quantity": 1, "rate": 5.50}]
        totals = compute_totals(lines, 0.2)
        assert totals.net == 25.5
        assert totals.vat == 5.1
        assert totals.gross == 30.6
        assert totals.vat_rate == 0.2

    def test_explicit_amount_wins(self):
        assert line_amount({"quantity": 3, "rate": 10, "amount": 7}) == 7.0
        assert line_amount({"qty": 3, "unit_rate": 10}) == 30.0

    def test_no_lines(self):
        totals = compute_totals([], 0.2)
        assert (totals.net, totals.vat, totals.gross) == (0.0, 0.0, 0.0)

    def test_bad_values_count_as_zero(self):
        totals = compute_totals([{"quantity": "abc", "rate": 5}, {"amount": None, "quantity": 1, "rate": 4}], "x")
        assert totals.net == 4.0
        assert totals.vat == 0.0
        assert totals.gross == 4.0

    def test_line_order_does_not_matter(self):
        lines = [{"amount": 0.1}, {"amount": 0.2}, {"amount": 0.3}, {"amount": 1e-9}]
        assert compute_totals(lines, 0.2) == compute_totals(list(reversed(lines)), 0.2)

    def test_large_amounts_do_not_raise(self):
        totals = compute_totals([{"amount": 1e27}], 0.2)
        assert totals.net == 1e27
        assert totals.vat == round_money(1e27 * 0.2)
        assert totals.gross > totals.net
        assert round_money(1e300) == 1e300

    def test_overflowing_sum_counts_as_zero(self):
        totals = compute_totals([{"amount": 1e308}, {"amount": 1e308}], 0.2)
        assert (totals.net, totals.vat, totals.gross) == (0.0, 0.0, 0.0)

    def test_overflowing_product_counts_as_zero(self):
        assert line_amount({"quantity": 1e200, "rate": 1e200}) == 0.0
        assert build_line(LineInput(description="x", quantity="1e200", rate="1e200")).amount == 0.0

    def test_zero_rate(self):
        totals = compute_totals([{"amount": 99.99}], 0)
        assert totals.vat == 0.0
        assert totals.gross == 99.99


@pytest.mark.unit
class TestBuildLine:
    def test_computed_amount(self):
        line = build_line(LineInput(description=" Bricks ", quantity="500", rate="0.45"), "3.01")
        assert line.description == "Bricks"
        assert line.amount == pytest.approx(225.0)
        assert line.amount_overridden is False
        assert line.unit == "nr"
        assert line.cost_code == "3.01"

    def test_override_kept_verbatim(self):
        line = build_line(LineInput(description="Lump sum", quantity=2, rate=10, amount=15, cost_code="4.01"))
        assert line.amount == 15.0
        assert line.amount_overridden is True
        assert line.cost_code == "4.01"
