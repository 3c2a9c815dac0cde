"""
Per-delivery earning computation.

Pure functions: no database access, no side effects. The assignment
service calls compute_earning() inside the delivered transaction.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from fleetledger.config import settings
from fleetledger.core.exceptions import ValidationError
from fleetledger.models.delivery import PaymentType


ZERO = Decimal("0.00")


def minor_unit(places: Optional[int] = None) -> Decimal:
    """Quantum for the configured currency, e.g. Decimal('0.01') for paise."""
    places = settings.CURRENCY_DECIMAL_PLACES if places is None else places
    return Decimal(1).scaleb(-places)


def round_money(value: Any, places: Optional[int] = None) -> Decimal:
    """Round half-up to the currency minor unit."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(minor_unit(places), rounding=ROUND_HALF_UP)


def parse_amount(value: Any, places: Optional[int] = None) -> Decimal:
    """
    Money as submitted by a caller, kept exactly.

    Unlike round_money(), an amount with more decimal places than the
    currency allows is rejected instead of being rounded.

    Raises:
        ValidationError: Not a finite number, or finer than the minor unit
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    quantum = minor_unit(places)
    if amount != amount.quantize(quantum):
        raise ValidationError(
            f"Amount {value} has more than {-quantum.as_tuple().exponent} decimal places",
            amount=str(value),
        )
    return amount.quantize(quantum)


def parse_payment_type(value: Any) -> PaymentType:
    if isinstance(value, PaymentType):
        return value
    try:
        return PaymentType(value)
    except ValueError:
        raise ValidationError(f"Unknown payment type '{value}'", payment_type=str(value))


def compute_earning(agent: Any, order: Any) -> Decimal:
    """
    Amount credited to `agent` for delivering `order`.

    - fixed_per_order: per_order_amount (0 when unset)
    - percentage_per_order: order.total * percentage_value / 100, half-up
    - monthly_salary: 0 (paid outside the wallet)

    Raises:
        ValidationError: Unknown payment type
    """
    payment_type = parse_payment_type(agent.payment_type)

    if payment_type == PaymentType.FIXED_PER_ORDER:
        if agent.per_order_amount is None:
            return ZERO
        return round_money(agent.per_order_amount)

    if payment_type == PaymentType.PERCENTAGE_PER_ORDER:
        if agent.percentage_value is None or order.total is None:
            return ZERO
        total = Decimal(str(order.total))
        percentage = Decimal(str(agent.percentage_value))
        return round_money(total * percentage / Decimal(100))

    return ZERO


def describe_earning(order: Any) -> str:
    return f"Delivery for order #{order.order_number}"
