"""
Pure fee arithmetic: processing surcharge, totals and balances.

All amounts are Decimal and rounded to cents half away from zero.
Nothing here touches the database.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from leaguereg.utils.constants import DEFAULT_CC_PROCESSING_PERCENT, MONEY_QUANTUM, ZERO

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert value to Decimal; None becomes zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 don't drag binary noise along
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_processing_fee(fee_base: Number, cc_percent: Number = DEFAULT_CC_PROCESSING_PERCENT) -> Decimal:
    """Processing surcharge for a base fee at the given card percentage."""
    return round_money(to_decimal(fee_base) * to_decimal(cc_percent) / Decimal(100))


def compute_totals(
    fee_base: Number,
    fee_discount: Optional[Number] = None,
    fee_donation: Optional[Number] = None,
    fee_processing_override: Optional[Number] = None,
    cc_percent: Number = DEFAULT_CC_PROCESSING_PERCENT,
) -> Tuple[Decimal, Decimal]:
    """
    Compute processing fee and fee total for a registration.

    Args:
        fee_base: Base per-registrant fee
        fee_discount: Discount already granted (optional)
        fee_donation: Donation credit (optional)
        fee_processing_override: Explicit processing fee; when None it is
            derived from fee_base and cc_percent
        cc_percent: Card processing percentage (e.g. 3.5)

    Returns:
        (processing_fee, fee_total) where
        fee_total = max(0, base + processing - discount - donation)
    """
    base = round_money(fee_base)
    if fee_processing_override is not None:
        processing = round_money(fee_processing_override)
    else:
        processing = compute_processing_fee(base, cc_percent)

    total = base + processing - round_money(to_decimal(fee_discount)) - round_money(to_decimal(fee_donation))
    return processing, max(ZERO, round_money(total))


def compute_owed(fee_total: Number, paid_total: Number) -> Decimal:
    """Outstanding balance, never negative."""
    return max(ZERO, round_money(to_decimal(fee_total) - to_decimal(paid_total)))


def processing_reduction(amount: Number, cc_percent: Number = DEFAULT_CC_PROCESSING_PERCENT) -> Decimal:
    """
    Processing fee that disappears when `amount` is taken off the base.

    The surcharge is a percentage of the charged base, so a discount of
    `amount` shrinks it by amount * cc_percent / 100.
    """
    return round_money(to_decimal(amount) * to_decimal(cc_percent) / Decimal(100))
