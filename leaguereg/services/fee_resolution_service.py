"""
Base fee resolution for a team.

Walks team -> age group -> league; the first strictly positive value wins:

1. centralized per-registrant lookup (team_lookup_service)
2. the already-loaded Team row: fee_base, else per_registrant_fee
3. legacy: re-read the Team row, then its AgeGroup team_fee, else roster_fee
4. league level (not modeled, always 0)
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import AgeGroup, Job, Team
from leaguereg.models.schemas import TeamFeeResponse
from leaguereg.services import fee_calculator, settings_service, team_lookup_service
from leaguereg.utils.constants import ZERO

logger = logging.getLogger(__name__)


def coalesce(*values: Optional[Decimal]) -> Decimal:
    """First value that is not None, else zero."""
    for value in values:
        if value is not None:
            return Decimal(value)
    return ZERO


def team_row_fee(team: Optional[Team]) -> Decimal:
    """fee_base if set, else per_registrant_fee."""
    if team is None:
        return ZERO
    return coalesce(team.fee_base, team.per_registrant_fee)


async def resolve_legacy_fee(session: AsyncSession, team_id: int) -> Decimal:
    """Re-query the team, then fall back to its age group fees."""
    result = await session.execute(
        select(Team.fee_base, Team.per_registrant_fee, Team.agegroup_id).where(Team.id == team_id)
    )
    row = result.first()
    if row is None:
        return ZERO

    fee_base, per_registrant_fee, agegroup_id = row
    fee = coalesce(fee_base, per_registrant_fee)
    if fee > 0 or agegroup_id is None:
        return fee

    result = await session.execute(
        select(AgeGroup.team_fee, AgeGroup.roster_fee).where(AgeGroup.id == agegroup_id)
    )
    agegroup_row = result.first()
    if agegroup_row is None:
        return ZERO
    return coalesce(*agegroup_row)


async def resolve_league_fee(session: AsyncSession, team_id: int) -> Decimal:
    """League-level player fee; not modeled for base-fee resolution yet."""
    return ZERO


async def resolve_base_fee(
    session: AsyncSession, team_id: int, team: Optional[Team] = None
) -> Decimal:
    """
    Resolve a team's base per-registrant fee.

    Args:
        session: Database session
        team_id: Team to price
        team: Team row already loaded by the caller, if any

    Returns:
        The first positive fee found along the cascade, or 0 ("free")
    """
    fee, _ = await team_lookup_service.resolve_per_registrant(session, team_id)
    if fee > 0:
        return fee

    fee = team_row_fee(team)
    if fee > 0:
        logger.debug(f"Team {team_id}: fee from cached team row")
        return fee

    fee = await resolve_legacy_fee(session, team_id)
    if fee > 0:
        logger.debug(f"Team {team_id}: fee from legacy team/age group fallback")
        return fee

    fee = await resolve_league_fee(session, team_id)
    if fee > 0:
        return fee

    logger.debug(f"Team {team_id}: no fee configured, treating as free")
    return ZERO


async def preview_team_fee(session: AsyncSession, team_id: int) -> TeamFeeResponse:
    """
    Resolved base fee for a team with the processing fee and total it would carry.

    Args:
        session: Database session
        team_id: Team ID

    Returns:
        TeamFeeResponse

    Raises:
        TeamNotFoundError: If the team does not exist
    """
    team = await team_lookup_service.get_team(session, team_id)
    job = await session.get(Job, team.job_id)
    cc_percent = await settings_service.get_cc_percent(session, job)

    base = await resolve_base_fee(session, team_id, team=team)
    _, deposit = await team_lookup_service.resolve_per_registrant(session, team_id)
    processing, total = fee_calculator.compute_totals(base, cc_percent=cc_percent)
    return TeamFeeResponse(
        team_id=team_id,
        fee_base=fee_calculator.round_money(base),
        fee_processing=processing,
        fee_total=total,
        deposit=fee_calculator.round_money(deposit),
    )
