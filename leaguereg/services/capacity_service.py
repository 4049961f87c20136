"""
Roster capacity checks for team selections.
"""

from typing import Dict, Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import Registration, Team


def is_full(team: Team, roster_count: Optional[int]) -> bool:
    """A team is full when it has a positive max_count and the roster has reached it."""
    max_count = team.max_count or 0
    return max_count > 0 and (roster_count or 0) >= max_count


async def get_roster_counts(
    session: AsyncSession, job_id: int, team_ids: Iterable[int]
) -> Dict[int, int]:
    """
    Count active registrations per team in a single grouped query.

    Args:
        session: Database session
        job_id: Job the teams belong to
        team_ids: Teams to count

    Returns:
        Dict mapping team_id to active roster size (teams with nobody are absent)
    """
    team_ids = list(set(team_ids))
    if not team_ids:
        return {}

    result = await session.execute(
        select(Registration.assigned_team_id, func.count(Registration.registration_id))
        .where(
            Registration.job_id == job_id,
            Registration.assigned_team_id.in_(team_ids),
            Registration.active.is_(True),
        )
        .group_by(Registration.assigned_team_id)
    )
    return {team_id: count for team_id, count in result.all()}
