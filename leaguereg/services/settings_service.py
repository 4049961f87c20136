"""
Settings service for runtime configuration with database overrides.

Checks the settings table first, then falls back to environment variables,
then to the supplied default.
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from dotenv import load_dotenv

from leaguereg.database.models import Job, Setting
from leaguereg.utils.constants import DEFAULT_CC_PROCESSING_PERCENT
from leaguereg.utils.datetime_utils import utcnow

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

CC_PERCENT_SETTING = "cc_processing_percent"
CC_PERCENT_ENV = "CC_PROCESSING_PERCENT"
VALIDATION_FAIL_OPEN_SETTING = "validation_fail_open"
VALIDATION_FAIL_OPEN_ENV = "VALIDATION_FAIL_OPEN"


async def get_setting(session: AsyncSession, key: str) -> Optional[str]:
    """
    Get a setting value from the settings table.

    Args:
        session: Database session
        key: Setting key

    Returns:
        Setting value or None if not found
    """
    result = await session.execute(
        select(Setting).where(Setting.key == key)
    )
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(session: AsyncSession, key: str, value: str) -> None:
    """
    Set a setting value (upsert). The caller owns the commit.

    Args:
        session: Database session
        key: Setting key
        value: Setting value
    """
    result = await session.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()
    if setting:
        setting.value = value
        setting.updated_at = utcnow()
    else:
        session.add(Setting(key=key, value=value))
    await session.flush()


async def get_setting_with_fallback(
    session: Optional[AsyncSession],
    key: str,
    env_var: Optional[str] = None,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get a setting value from database first, then env var, then default.

    Args:
        session: Database session (optional)
        key: Setting key in database
        env_var: Environment variable name to fall back to
        default: Default value if neither database nor env var is set

    Returns:
        Setting value as string, or None
    """
    if session is not None:
        try:
            value = await get_setting(session, key)
            if value is not None:
                return value
        except Exception as e:
            logger.warning(f"Error reading setting {key} from database: {e}")

    if env_var:
        value = os.getenv(env_var)
        if value is not None:
            return value

    return default


async def get_bool_setting(
    session: Optional[AsyncSession],
    key: str,
    env_var: Optional[str] = None,
    default: bool = True,
) -> bool:
    """Get a boolean setting value."""
    value = await get_setting_with_fallback(session, key, env_var, None)

    if value is None:
        return default

    return value.lower() in ("true", "1", "yes")


async def get_decimal_setting(
    session: Optional[AsyncSession],
    key: str,
    env_var: Optional[str] = None,
    default: Optional[Decimal] = None,
) -> Optional[Decimal]:
    """Get a Decimal setting value; invalid values fall back to the default."""
    value = await get_setting_with_fallback(session, key, env_var, None)

    if value is None:
        return default

    try:
        return Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        logger.warning(f"Invalid decimal value for setting {key}: {value}")
        return default


async def get_cc_percent(session: Optional[AsyncSession], job: Optional[Job] = None) -> Decimal:
    """
    Card processing percentage for a job.

    Job.processing_fee_percent wins, then the settings table, then the
    CC_PROCESSING_PERCENT env var, then the built-in default. A job that
    does not add processing fees gets 0.
    """
    if job is not None:
        if not job.add_processing_fees:
            return Decimal("0")
        if job.processing_fee_percent is not None:
            return Decimal(job.processing_fee_percent)

    percent = await get_decimal_setting(
        session, CC_PERCENT_SETTING, CC_PERCENT_ENV, DEFAULT_CC_PROCESSING_PERCENT
    )
    return percent if percent is not None else DEFAULT_CC_PROCESSING_PERCENT


async def get_validation_fail_open(session: Optional[AsyncSession]) -> bool:
    """Whether an exception raised by form validation lets the submission save."""
    return await get_bool_setting(
        session, VALIDATION_FAIL_OPEN_SETTING, VALIDATION_FAIL_OPEN_ENV, default=True
    )
