"""
Discount code service: managing job codes and applying them to a family's players.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import DiscountCode, Registration
from leaguereg.database.unit_of_work import RegistrationUnitOfWork
from leaguereg.models.schemas import (
    ApplyDiscountResponse,
    DiscountCodeResponse,
    PlayerDiscountResult,
    RegistrationFinancials,
)
from leaguereg.services import fee_application_service, fee_calculator, job_config_service, settings_service
from leaguereg.utils.constants import ZERO
from leaguereg.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

MSG_INVALID_CODE = "Invalid or expired discount code"
MSG_REGISTRATION_NOT_FOUND = "Player registration not found"
MSG_ALREADY_DISCOUNTED = "Discount already applied to this player"
MSG_NOT_APPLICABLE = "No discount applicable"
MSG_NONE_APPLIED = "No discounts were applied"

CODE_NAME_MAX_LENGTH = 50


class DiscountCodeError(ValueError):
    """Raised when a discount code cannot be created or changed."""


class DuplicateDiscountCodeError(DiscountCodeError):
    """Raised when the job already has a code with the same name."""


class DiscountCodeNotFoundError(DiscountCodeError):
    """Raised when a code id does not belong to the job."""


class DiscountCodeInUseError(DiscountCodeError):
    """Raised when deleting a code that registrations already reference."""


def _validate_terms(amount: Decimal, as_percent: bool, start_date: datetime, end_date: datetime) -> Decimal:
    """Rounded amount; raises DiscountCodeError for a bad amount or window."""
    amount = fee_calculator.round_money(amount)
    if amount <= 0:
        raise DiscountCodeError("Discount amount must be positive")
    if as_percent and amount > 100:
        raise DiscountCodeError("Percent discount cannot exceed 100")
    if end_date <= start_date:
        raise DiscountCodeError("End date must be after start date")
    return amount


async def code_exists(session: AsyncSession, job_id: int, code_name: str) -> bool:
    """Whether the job already has a code with this name, ignoring case."""
    result = await session.execute(
        select(DiscountCode.id).where(
            DiscountCode.job_id == job_id,
            func.lower(DiscountCode.code_name) == code_name.strip().lower(),
        )
    )
    return result.first() is not None


async def get_usage_count(session: AsyncSession, code_id: int) -> int:
    result = await session.execute(
        select(func.count(Registration.registration_id)).where(Registration.discount_code_id == code_id)
    )
    return int(result.scalar_one())


async def _get_job_code(session: AsyncSession, job_id: int, code_id: int) -> DiscountCode:
    code = await session.get(DiscountCode, code_id)
    if code is None or code.job_id != job_id:
        raise DiscountCodeNotFoundError(f"Discount code with ID {code_id} not found")
    return code


async def create_discount_code(
    session: AsyncSession,
    job_id: int,
    code_name: str,
    amount: Decimal,
    as_percent: bool,
    start_date: datetime,
    end_date: datetime,
    user_id: Optional[str] = None,
) -> DiscountCode:
    """
    Create a discount code for a job.

    Args:
        session: Database session
        job_id: Job the code belongs to
        code_name: Code players type in (unique per job, case-insensitive)
        amount: Dollar amount, or percent of base fee when as_percent
        as_percent: Whether amount is a percentage
        start_date: First moment the code is honored
        end_date: Last moment the code is honored
        user_id: Caller creating the code

    Returns:
        The new DiscountCode (flushed, not committed)

    Raises:
        JobNotFoundError: If the job does not exist
        DuplicateDiscountCodeError: If the job already has this code
        DiscountCodeError: If the amount or window is invalid
    """
    await job_config_service.get_job(session, job_id)

    code_name = code_name.strip()
    if not code_name:
        raise DiscountCodeError("Code name is required")
    amount = _validate_terms(amount, as_percent, start_date, end_date)

    if await code_exists(session, job_id, code_name):
        raise DuplicateDiscountCodeError(f"Discount code '{code_name}' already exists for this job")

    code = DiscountCode(
        job_id=job_id,
        code_name=code_name,
        as_percent=as_percent,
        code_amount=amount,
        active=True,
        code_start_date=start_date,
        code_end_date=end_date,
        modified_by=user_id,
    )
    session.add(code)
    await session.flush()
    logger.info(f"Created discount code {code_name} for job {job_id}")
    return code


async def list_discount_codes(
    session: AsyncSession, job_id: int, now: Optional[datetime] = None
) -> List[DiscountCodeResponse]:
    """
    List a job's discount codes with how many registrations used each.

    Args:
        session: Database session
        job_id: Job ID
        now: Reference time for expiry (defaults to current UTC time)

    Returns:
        Codes ordered by name
    """
    now = now or utcnow()
    usage = (
        select(Registration.discount_code_id, func.count(Registration.registration_id).label("usage_count"))
        .where(Registration.discount_code_id.isnot(None))
        .group_by(Registration.discount_code_id)
        .subquery()
    )
    result = await session.execute(
        select(
            DiscountCode,
            func.coalesce(usage.c.usage_count, 0),
            (DiscountCode.code_end_date < now).label("is_expired"),
        )
        .outerjoin(usage, usage.c.discount_code_id == DiscountCode.id)
        .where(DiscountCode.job_id == job_id)
        .order_by(DiscountCode.code_name)
    )

    codes = []
    for code, usage_count, is_expired in result.all():
        response = DiscountCodeResponse.model_validate(code)
        response.usage_count = int(usage_count or 0)
        response.is_expired = bool(is_expired)
        codes.append(response)
    return codes


async def bulk_add_discount_codes(
    session: AsyncSession,
    job_id: int,
    prefix: str,
    suffix: str,
    start_number: int,
    count: int,
    amount: Decimal,
    as_percent: bool,
    start_date: datetime,
    end_date: datetime,
    user_id: Optional[str] = None,
) -> List[DiscountCode]:
    """
    Generate a numbered run of codes, e.g. TEAM001, TEAM002, ...

    All or nothing: if any generated name already exists no code is added.

    Raises:
        JobNotFoundError: If the job does not exist
        DuplicateDiscountCodeError: If a generated name is taken
        DiscountCodeError: If the amount, window or count is invalid
    """
    await job_config_service.get_job(session, job_id)
    if count < 1:
        raise DiscountCodeError("Count must be at least 1")
    amount = _validate_terms(amount, as_percent, start_date, end_date)

    code_names = [f"{prefix}{str(start_number + i).zfill(3)}{suffix}".strip() for i in range(count)]
    for code_name in code_names:
        if len(code_name) > CODE_NAME_MAX_LENGTH:
            raise DiscountCodeError(f"Discount code '{code_name}' is longer than {CODE_NAME_MAX_LENGTH} characters")
        if await code_exists(session, job_id, code_name):
            raise DuplicateDiscountCodeError(
                f"Discount code '{code_name}' already exists. Bulk generation cancelled"
            )

    codes = [
        DiscountCode(
            job_id=job_id,
            code_name=code_name,
            as_percent=as_percent,
            code_amount=amount,
            active=True,
            code_start_date=start_date,
            code_end_date=end_date,
            modified_by=user_id,
        )
        for code_name in code_names
    ]
    session.add_all(codes)
    await session.flush()
    logger.info(f"Created {len(codes)} discount codes for job {job_id} ({code_names[0]}..{code_names[-1]})")
    return codes


async def update_discount_code(
    session: AsyncSession,
    job_id: int,
    code_id: int,
    amount: Decimal,
    as_percent: bool,
    start_date: datetime,
    end_date: datetime,
    active: bool,
    user_id: Optional[str] = None,
) -> DiscountCodeResponse:
    """
    Change a code's terms. The code name is fixed once created.

    Raises:
        DiscountCodeNotFoundError: If the code is not one of the job's codes
        DiscountCodeError: If the amount or window is invalid
    """
    code = await _get_job_code(session, job_id, code_id)
    code.code_amount = _validate_terms(amount, as_percent, start_date, end_date)
    code.as_percent = as_percent
    code.code_start_date = start_date
    code.code_end_date = end_date
    code.active = active
    code.modified = utcnow()
    code.modified_by = user_id
    await session.flush()

    response = DiscountCodeResponse.model_validate(code)
    response.usage_count = await get_usage_count(session, code_id)
    response.is_expired = end_date < utcnow()
    return response


async def delete_discount_code(session: AsyncSession, job_id: int, code_id: int) -> None:
    """
    Delete an unused code.

    Raises:
        DiscountCodeNotFoundError: If the code is not one of the job's codes
        DiscountCodeInUseError: If any registration used the code
    """
    code = await _get_job_code(session, job_id, code_id)
    usage_count = await get_usage_count(session, code_id)
    if usage_count > 0:
        raise DiscountCodeInUseError(
            f"Cannot delete discount code '{code.code_name}' because it has been used {usage_count} time(s)"
        )
    code_name = code.code_name
    await session.delete(code)
    await session.flush()
    logger.info(f"Deleted discount code {code_name} from job {job_id}")


async def batch_update_status(
    session: AsyncSession, job_id: int, code_ids: Sequence[int], active: bool, user_id: Optional[str] = None
) -> int:
    """Activate or deactivate several codes; ids from other jobs are ignored. Returns how many changed."""
    if not code_ids:
        return 0
    result = await session.execute(
        select(DiscountCode).where(DiscountCode.job_id == job_id, DiscountCode.id.in_(set(code_ids)))
    )
    codes = result.scalars().all()
    now = utcnow()
    for code in codes:
        code.active = active
        code.modified = now
        code.modified_by = user_id
    await session.flush()
    return len(codes)


async def get_active_code(
    session: AsyncSession, job_id: int, code: str, now: Optional[datetime] = None
) -> Optional[DiscountCode]:
    """Active, in-window code for the job matching `code` case-insensitively."""
    if not code or not code.strip():
        return None
    now = now or utcnow()
    result = await session.execute(
        select(DiscountCode).where(
            DiscountCode.job_id == job_id,
            func.lower(DiscountCode.code_name) == code.strip().lower(),
            DiscountCode.active.is_(True),
            DiscountCode.code_start_date <= now,
            DiscountCode.code_end_date >= now,
        )
    )
    return result.scalars().first()


def compute_player_discounts(code: DiscountCode, base_by_player: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """
    Split a code's value across players.

    Percent codes take that percentage of each player's base fee. Fixed
    codes are capped at the combined base fees and split in proportion to
    each base; the cent left over from rounding goes to the largest base.
    """
    discounts = {player_id: ZERO for player_id in base_by_player}
    code_amount = fee_calculator.to_decimal(code.code_amount)

    if code.as_percent:
        for player_id, base in base_by_player.items():
            share = fee_calculator.round_money(base * code_amount / Decimal(100))
            discounts[player_id] = min(share, fee_calculator.round_money(base))
        return discounts

    total_base = sum((b for b in base_by_player.values() if b > 0), ZERO)
    if total_base <= 0:
        return discounts

    cap = fee_calculator.round_money(min(code_amount, total_base))
    for player_id, base in base_by_player.items():
        if base > 0:
            discounts[player_id] = fee_calculator.round_money(cap * base / total_base)

    drift = cap - sum(discounts.values(), ZERO)
    if drift != 0:
        largest = max(base_by_player, key=lambda p: base_by_player[p])
        discounts[largest] += drift
    return discounts


def _pick_owing_registration(registrations: Sequence[Registration]) -> Optional[Registration]:
    """Newest registration with a balance; input is newest-modified first."""
    for registration in registrations:
        if fee_calculator.to_decimal(registration.owed_total) > 0:
            return registration
    return None


async def apply_discount_code(
    uow: RegistrationUnitOfWork,
    job_id: int,
    family_user_id: str,
    code: str,
    player_ids: Sequence[str],
    caller_user_id: str,
) -> ApplyDiscountResponse:
    """
    Apply a discount code to a family's players in one transaction.

    Args:
        uow: Open unit of work; committed or rolled back here
        job_id: Job ID
        family_user_id: Family the registrations belong to
        code: Code entered by the user
        player_ids: Players to discount
        caller_user_id: Recorded as modified_by

    Returns:
        ApplyDiscountResponse with one result per player
    """
    session = uow.session
    job = await job_config_service.get_job(session, job_id)
    now = utcnow()

    discount_code = await get_active_code(session, job_id, code, now)
    if discount_code is None:
        await uow.rollback()
        logger.info(f"Rejected discount code '{code}' for job {job_id}")
        return ApplyDiscountResponse(success=False, message=MSG_INVALID_CODE)

    player_ids = list(dict.fromkeys(player_ids))
    result = await session.execute(
        select(Registration)
        .where(
            Registration.job_id == job_id,
            Registration.family_user_id == family_user_id,
            Registration.player_user_id.in_(player_ids),
        )
        .order_by(Registration.modified.desc())
    )
    by_player: Dict[str, List[Registration]] = {}
    for registration in result.scalars().all():
        by_player.setdefault(registration.player_user_id, []).append(registration)

    results: Dict[str, PlayerDiscountResult] = {}
    targets: Dict[str, Registration] = {}
    for player_id in player_ids:
        registration = _pick_owing_registration(by_player.get(player_id, []))
        if registration is None:
            results[player_id] = PlayerDiscountResult(
                player_id=player_id, success=False, message=MSG_REGISTRATION_NOT_FOUND
            )
        elif fee_calculator.to_decimal(registration.fee_discount) > 0:
            results[player_id] = PlayerDiscountResult(
                player_id=player_id, success=False, message=MSG_ALREADY_DISCOUNTED
            )
        else:
            targets[player_id] = registration

    discounts = compute_player_discounts(
        discount_code,
        {p: fee_calculator.to_decimal(r.fee_base) for p, r in targets.items()},
    )
    cc_percent = await settings_service.get_cc_percent(session, job)

    total_discount = ZERO
    updated: Dict[str, RegistrationFinancials] = {}
    for player_id, registration in targets.items():
        amount = discounts.get(player_id, ZERO)
        if amount <= 0:
            results[player_id] = PlayerDiscountResult(
                player_id=player_id, success=False, message=MSG_NOT_APPLICABLE
            )
            continue

        fee_application_service.apply_discount_to_registration(
            registration, amount, cc_percent, add_processing_fees=job.add_processing_fees
        )
        registration.discount_code_id = discount_code.id
        registration.modified = now
        registration.modified_by = caller_user_id
        total_discount += amount
        results[player_id] = PlayerDiscountResult(
            player_id=player_id,
            success=True,
            message=f"Discount applied: ${amount:.2f}",
            discount_amount=amount,
        )
        updated[player_id] = RegistrationFinancials.model_validate(registration)

    success_count = len(updated)
    # Rows are expired once the transaction ends
    code_name = discount_code.code_name
    if success_count:
        await uow.commit()
        message = f"Successfully applied discount to {success_count} player(s)"
    else:
        await uow.rollback()
        message = MSG_NONE_APPLIED

    logger.info(
        f"Discount '{code_name}' job={job_id} family={family_user_id}: "
        f"{success_count} applied, total ${total_discount:.2f}"
    )
    return ApplyDiscountResponse(
        success=success_count > 0,
        message=message,
        total_discount=total_discount,
        success_count=success_count,
        failure_count=len(player_ids) - success_count,
        results=[results[p] for p in player_ids],
        updated_financials=updated,
    )
