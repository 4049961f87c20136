"""
Job configuration lookups: registration mode and form metadata.
"""

import json
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import Job, RegistrationMode
from leaguereg.utils.constants import REGISTRATION_MODE_OPTION_KEYS

logger = logging.getLogger(__name__)


class JobNotFoundError(ValueError):
    """Raised when a job id does not match any record."""


def extract_mode_from_core_profile(core_regform_player: Optional[str]) -> Optional[str]:
    """
    Read the mode from a token like "CAC09|..." or "PP10|...".

    "0" and "1" are legacy on/off values that carry no mode.
    """
    if not core_regform_player or not core_regform_player.strip():
        return None
    if core_regform_player in ("0", "1"):
        return None

    first_part = core_regform_player.split("|")[0].strip().upper()
    if first_part.startswith(RegistrationMode.CAC.value):
        return RegistrationMode.CAC.value
    if first_part.startswith(RegistrationMode.PP.value):
        return RegistrationMode.PP.value
    return None


def extract_mode_from_json_options(json_options: Optional[str]) -> Optional[str]:
    """Look for an explicit mode under one of the known option keys."""
    if not json_options or not json_options.strip():
        return None

    try:
        options = json.loads(json_options)
    except (ValueError, TypeError):
        logger.debug("Ignoring malformed job json_options")
        return None
    if not isinstance(options, dict):
        return None

    for key in REGISTRATION_MODE_OPTION_KEYS:
        value = options.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        value = value.strip().upper()
        if value == RegistrationMode.CAC.value:
            return RegistrationMode.CAC.value
        if value == RegistrationMode.PP.value:
            return RegistrationMode.PP.value
    return None


def get_registration_mode(core_regform_player: Optional[str], json_options: Optional[str]) -> str:
    """
    Derive the registration mode for a job.

    The explicit mode token wins, then job JSON options; otherwise "PP".
    """
    return (
        extract_mode_from_core_profile(core_regform_player)
        or extract_mode_from_json_options(json_options)
        or RegistrationMode.PP.value
    )


async def get_job(session: AsyncSession, job_id: int) -> Job:
    """
    Load a job or raise JobNotFoundError.

    Args:
        session: Database session
        job_id: Job ID

    Returns:
        Job row
    """
    result = await session.execute(select(Job).where(Job.id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found")
    return job
