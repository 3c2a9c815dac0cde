"""Tests for per-delivery earning computation."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from fleetledger.core.exceptions import ValidationError
from fleetledger.services.earnings_calculator import compute_earning, describe_earning, parse_amount, round_money


def _agent(payment_type, per_order_amount=None, percentage_value=None, monthly_salary=None):
    return SimpleNamespace(
        payment_type=payment_type,
        per_order_amount=per_order_amount,
        percentage_value=percentage_value,
        monthly_salary=monthly_salary,
    )


def _order(total, order_number="ORD-1001"):
    return SimpleNamespace(total=Decimal(total), order_number=order_number)


class TestFixedPerOrder:
    def test_flat_amount(self):
        assert compute_earning(_agent("fixed_per_order", per_order_amount=Decimal("30")), _order("500")) == Decimal("30.00")

    def test_independent_of_order_total(self):
        agent = _agent("fixed_per_order", per_order_amount=Decimal("30"))
        assert compute_earning(agent, _order("12000")) == compute_earning(agent, _order("10"))

    def test_unset_rate_is_zero(self):
        assert compute_earning(_agent("fixed_per_order"), _order("500")) == Decimal("0")


class TestPercentagePerOrder:
    def test_five_percent_of_500(self):
        assert compute_earning(_agent("percentage_per_order", percentage_value=Decimal("5")), _order("500")) == Decimal("25.00")

    def test_rounds_half_up_to_paise(self):
        # 2.5% of 10.10 = 0.2525 -> 0.25 ; 2.5% of 10.30 = 0.2575 -> 0.26
        agent = _agent("percentage_per_order", percentage_value=Decimal("2.5"))
        assert compute_earning(agent, _order("10.10")) == Decimal("0.25")
        assert compute_earning(agent, _order("10.30")) == Decimal("0.26")

    def test_exact_half_rounds_up(self):
        # 10% of 0.05 = 0.005 -> 0.01
        agent = _agent("percentage_per_order", percentage_value=Decimal("10"))
        assert compute_earning(agent, _order("0.05")) == Decimal("0.01")


class TestMonthlySalary:
    def test_no_per_order_earning(self):
        agent = _agent("monthly_salary", monthly_salary=Decimal("18000"))
        assert compute_earning(agent, _order("500")) == Decimal("0")


class TestInvalidConfiguration:
    def test_unknown_payment_type(self):
        with pytest.raises(ValidationError):
            compute_earning(_agent("commission_only"), _order("500"))

    def test_round_money_rejects_garbage(self):
        with pytest.raises(ValidationError):
            round_money("abc")


class TestParseAmount:
    @pytest.mark.parametrize("value, expected", [("30", "30.00"), ("35.5", "35.50"), (Decimal("0.01"), "0.01"), (12, "12.00")])
    def test_exact_amounts_pass_through(self, value, expected):
        assert parse_amount(value) == Decimal(expected)

    @pytest.mark.parametrize("value", ["99.999", "0.005", "1.0001"])
    def test_more_places_than_currency_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    def test_trailing_zeros_are_not_extra_precision(self):
        assert parse_amount("10.5000") == Decimal("10.50")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", None])
    def test_not_a_number(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    def test_zero_decimal_currency(self):
        assert parse_amount("500", places=0) == Decimal("500")
        with pytest.raises(ValidationError):
            parse_amount("500.5", places=0)


def test_description_mentions_order_number():
    assert describe_earning(_order("1", order_number="ORD-42")) == "Delivery for order #ORD-42"
