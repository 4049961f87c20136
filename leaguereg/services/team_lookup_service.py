"""
Team lookup service: the centralized per-registrant fee used by team listings.
"""

import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import AgeGroup, League, Team
from leaguereg.utils.constants import ZERO

logger = logging.getLogger(__name__)


class TeamNotFoundError(ValueError):
    """Raised when a team id does not match any team (in the job, when one is given)."""


async def get_team(session: AsyncSession, team_id: int, job_id: Optional[int] = None) -> Team:
    """Load a team or raise TeamNotFoundError."""
    query = select(Team).where(Team.id == team_id)
    if job_id is not None:
        query = query.where(Team.job_id == job_id)
    result = await session.execute(query)
    team = result.scalar_one_or_none()
    if team is None:
        raise TeamNotFoundError(f"Team {team_id} not found")
    return team


def _positive(value: Optional[Decimal]) -> bool:
    return value is not None and value > 0


def compute_per_registrant_fee(
    per_registrant_fee: Optional[Decimal],
    agegroup_team_fee: Optional[Decimal],
    agegroup_roster_fee: Optional[Decimal],
    league_player_fee_override: Optional[Decimal],
    agegroup_player_fee_override: Optional[Decimal],
) -> Decimal:
    """
    Pick the per-player charge for a team listing.

    Order: age group override, league override, the team's own
    per-registrant fee, age group team fee (only when a roster fee is also
    set), age group roster fee. Zero when nothing is configured.
    """
    if _positive(agegroup_player_fee_override):
        return agegroup_player_fee_override
    if _positive(league_player_fee_override):
        return league_player_fee_override
    if _positive(per_registrant_fee):
        return per_registrant_fee
    if _positive(agegroup_team_fee) and _positive(agegroup_roster_fee):
        return agegroup_team_fee
    if _positive(agegroup_roster_fee):
        return agegroup_roster_fee
    return ZERO


def compute_per_registrant_deposit(
    per_registrant_deposit: Optional[Decimal],
    agegroup_team_fee: Optional[Decimal],
    agegroup_roster_fee: Optional[Decimal],
) -> Decimal:
    """Deposit due up front; the roster fee doubles as deposit when both age group fees exist."""
    if _positive(per_registrant_deposit):
        return per_registrant_deposit
    if _positive(agegroup_team_fee) and _positive(agegroup_roster_fee):
        return agegroup_roster_fee
    return ZERO


async def resolve_per_registrant(session: AsyncSession, team_id: int) -> Tuple[Decimal, Decimal]:
    """
    Resolve (fee, deposit) for one team from its team, age group and league rows.

    Args:
        session: Database session
        team_id: Team ID

    Returns:
        Tuple of (per-registrant fee, per-registrant deposit); zeros when the
        team does not exist
    """
    result = await session.execute(
        select(
            Team.per_registrant_fee,
            Team.per_registrant_deposit,
            AgeGroup.team_fee,
            AgeGroup.roster_fee,
            AgeGroup.player_fee_override,
            League.player_fee_override,
        )
        .select_from(Team)
        .outerjoin(AgeGroup, AgeGroup.id == Team.agegroup_id)
        .outerjoin(League, League.id == AgeGroup.league_id)
        .where(Team.id == team_id)
    )
    row = result.first()
    if row is None:
        logger.info(f"resolve_per_registrant: team {team_id} not found; returning zeros")
        return ZERO, ZERO

    (
        per_registrant_fee,
        per_registrant_deposit,
        agegroup_team_fee,
        agegroup_roster_fee,
        agegroup_override,
        league_override,
    ) = row

    fee = compute_per_registrant_fee(
        per_registrant_fee,
        agegroup_team_fee,
        agegroup_roster_fee,
        league_override,
        agegroup_override,
    )
    deposit = compute_per_registrant_deposit(per_registrant_deposit, agegroup_team_fee, agegroup_roster_fee)
    return fee, deposit
