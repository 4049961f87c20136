"""
Writes computed fees onto registration rows.

A registration with money already collected (paid_total > 0) is never
re-priced here: base and processing fees stay as they were charged. Only the
discount path may move processing/total/owed afterwards.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import Registration, Team
from leaguereg.services import fee_calculator, fee_resolution_service
from leaguereg.utils.constants import DEFAULT_CC_PROCESSING_PERCENT, ZERO

logger = logging.getLogger(__name__)


def has_payment(registration: Registration) -> bool:
    """A registration counts as paid once any money has been recorded against it."""
    return fee_calculator.to_decimal(registration.paid_total) > 0


def _money(value) -> Decimal:
    return fee_calculator.round_money(fee_calculator.to_decimal(value))


async def apply_initial_fees(
    session: AsyncSession,
    registration: Registration,
    team_id: int,
    team_fee_base_hint: Optional[Decimal] = None,
    team_per_registrant_fee_hint: Optional[Decimal] = None,
    cc_percent: Decimal = DEFAULT_CC_PROCESSING_PERCENT,
    team: Optional[Team] = None,
) -> bool:
    """
    Price an unpaid registration for a team.

    Args:
        session: Database session
        registration: Registration to update in place
        team_id: Team whose fee applies
        team_fee_base_hint: Team.fee_base if the caller already has it
        team_per_registrant_fee_hint: Team.per_registrant_fee if known
        cc_percent: Card processing percentage for the job
        team: Loaded Team row, passed through to the fee cascade

    Returns:
        True if a team fee was priced in, False if the registration is already
        paid or the team is free. A free team still gets its totals recomputed
        so they agree with the base fee left on the row.
    """
    if has_payment(registration):
        logger.debug(
            f"Registration {registration.registration_id} has payments; fees left unchanged"
        )
        return False

    base_fee = fee_resolution_service.coalesce(team_fee_base_hint, team_per_registrant_fee_hint)
    if base_fee <= 0:
        base_fee = await fee_resolution_service.resolve_base_fee(session, team_id, team=team)
    priced = base_fee > 0
    if priced and _money(registration.fee_base) <= 0:
        registration.fee_base = _money(base_fee)

    current_processing = _money(registration.fee_processing)
    processing, total = fee_calculator.compute_totals(
        registration.fee_base,
        registration.fee_discount,
        registration.fee_donation,
        current_processing if current_processing > 0 else None,
        cc_percent,
    )
    if current_processing <= 0:
        registration.fee_processing = processing
    registration.fee_total = total
    registration.owed_total = fee_calculator.compute_owed(total, registration.paid_total)
    return priced


def apply_discount_to_registration(
    registration: Registration,
    amount: Decimal,
    cc_percent: Decimal = DEFAULT_CC_PROCESSING_PERCENT,
    add_processing_fees: bool = True,
) -> Decimal:
    """
    Apply a fixed discount to a registration and shrink its processing fee.

    The processing fee was charged as a percentage of the undiscounted base,
    so it drops by amount * cc_percent / 100 (never below zero).

    Args:
        registration: Registration to update in place
        amount: Discount taken off the base fee
        cc_percent: Card processing percentage for the job
        add_processing_fees: False when the job charges no processing fees

    Returns:
        The amount by which the processing fee was reduced
    """
    amount = _money(amount)
    if amount <= 0:
        return ZERO

    old_processing = _money(registration.fee_processing)
    reduction = ZERO
    if add_processing_fees and old_processing > 0:
        reduction = min(fee_calculator.processing_reduction(amount, cc_percent), old_processing)

    new_discount = _money(registration.fee_discount) + amount
    processing, total = fee_calculator.compute_totals(
        registration.fee_base,
        new_discount,
        registration.fee_donation,
        old_processing - reduction,
        cc_percent,
    )
    registration.fee_discount = new_discount
    registration.fee_processing = processing
    registration.fee_total = total
    registration.owed_total = fee_calculator.compute_owed(total, registration.paid_total)
    return reduction
