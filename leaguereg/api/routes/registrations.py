"""Registration pre-submit, discount and fee route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.api.auth_dependencies import get_unit_of_work, require_user
from leaguereg.api.routes import limiter
from leaguereg.database.db import get_db_session
from leaguereg.database.unit_of_work import ConflictError, RegistrationUnitOfWork
from leaguereg.models.schemas import (
    ApplyDiscountRequest,
    ApplyDiscountResponse,
    PreSubmitRequest,
    PreSubmitResponse,
    TeamFeeResponse,
)
from leaguereg.services import discount_service, fee_resolution_service, reconciliation_service
from leaguereg.services.job_config_service import JobNotFoundError
from leaguereg.services.team_lookup_service import TeamNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/jobs/{job_id}/registrations/pre-submit", response_model=PreSubmitResponse)
async def pre_submit_registrations(
    job_id: int,
    payload: PreSubmitRequest,
    user: dict = Depends(require_user),
    uow: RegistrationUnitOfWork = Depends(get_unit_of_work),
):
    """
    Reconcile a family's team selections before payment.

    Creates, moves or forks registrations and applies fees. Nothing is saved
    when form validation fails; the response then carries the errors.
    """
    try:
        return await reconciliation_service.pre_submit(
            uow,
            job_id=job_id,
            family_user_id=payload.family_user_id or user["id"],
            selections=payload.team_selections,
            caller_user_id=user["id"],
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in pre-submit for job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error processing registrations: {str(e)}")


@router.post("/api/jobs/{job_id}/registrations/apply-discount", response_model=ApplyDiscountResponse)
@limiter.limit("10/minute")
async def apply_discount(
    request: Request,
    job_id: int,
    payload: ApplyDiscountRequest,
    user: dict = Depends(require_user),
    uow: RegistrationUnitOfWork = Depends(get_unit_of_work),
):
    """Apply a discount code to some of the family's players."""
    try:
        return await discount_service.apply_discount_code(
            uow,
            job_id=job_id,
            family_user_id=payload.family_user_id or user["id"],
            code=payload.code,
            player_ids=payload.player_ids,
            caller_user_id=user["id"],
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error applying discount for job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error applying discount: {str(e)}")


@router.get("/api/teams/{team_id}/fee", response_model=TeamFeeResponse)
async def get_team_fee(team_id: int, session: AsyncSession = Depends(get_db_session)):
    """Resolved per-registrant fee for a team with the processing fee it carries."""
    try:
        return await fee_resolution_service.preview_team_fee(session, team_id)
    except TeamNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error resolving team fee: {str(e)}")
