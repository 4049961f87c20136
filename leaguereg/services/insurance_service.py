"""
Insurance offer snapshot returned alongside pre-submit results.

Building real policy quotes happens in an external service; this only
reports whether the job offers player insurance and what the family's
registrations currently cost.
"""

from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import Job, Registration


async def build_offer(session: AsyncSession, job_id: int, family_user_id: str) -> Dict[str, Any]:
    """
    Snapshot of the insurance offer for a family in a job.

    Args:
        session: Database session
        job_id: Job ID
        family_user_id: Family account the registrations belong to

    Returns:
        Dict with "available" and the family's "registrations"
    """
    job_result = await session.execute(select(Job.offer_player_insurance).where(Job.id == job_id))
    available = bool(job_result.scalar_one_or_none())

    result = await session.execute(
        select(Registration)
        .where(
            Registration.job_id == job_id,
            Registration.family_user_id == family_user_id,
            Registration.player_user_id.isnot(None),
        )
        .order_by(Registration.player_user_id, Registration.registration_ts)
    )
    registrations = [
        {
            "registration_id": reg.registration_id,
            "player_id": reg.player_user_id,
            "team_id": reg.assigned_team_id,
            "fee_total": str(reg.fee_total),
        }
        for reg in result.scalars().all()
    ]

    return {
        "job_id": job_id,
        "available": available,
        "registrations": registrations if available else [],
    }
