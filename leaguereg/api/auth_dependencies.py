"""
Caller identity and unit-of-work dependencies for FastAPI routes.

Authentication happens upstream; the gateway forwards the authenticated
user id in the X-User-Id header.
"""

from typing import AsyncGenerator, Optional

from fastapi import Header, HTTPException, status

from leaguereg.database.unit_of_work import RegistrationUnitOfWork

USER_ID_HEADER = "X-User-Id"


async def require_user(x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)) -> dict:
    """
    Dependency returning the calling user.

    Raises:
        HTTPException: 401 if the identity header is missing or blank
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    return {"id": x_user_id.strip()}


async def get_unit_of_work() -> AsyncGenerator[RegistrationUnitOfWork, None]:
    """Dependency yielding an open unit of work; the service commits or rolls it back."""
    async with RegistrationUnitOfWork() as uow:
        yield uow
