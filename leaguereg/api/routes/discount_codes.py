"""Discount code management route handlers."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.api.auth_dependencies import require_user
from leaguereg.database.db import get_db_session
from leaguereg.models.schemas import (
    BatchStatusResponse,
    CodeExistsResponse,
    DiscountCodeBatchStatus,
    DiscountCodeBulkCreate,
    DiscountCodeCreate,
    DiscountCodeResponse,
    DiscountCodeUpdate,
)
from leaguereg.services import discount_service
from leaguereg.services.job_config_service import JobNotFoundError

router = APIRouter()


@router.get("/api/jobs/{job_id}/discount-codes", response_model=List[DiscountCodeResponse])
async def list_discount_codes(
    job_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List a job's discount codes with usage counts."""
    try:
        return await discount_service.list_discount_codes(session, job_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing discount codes: {str(e)}")


@router.post("/api/jobs/{job_id}/discount-codes", response_model=DiscountCodeResponse)
async def create_discount_code(
    job_id: int,
    payload: DiscountCodeCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a discount code for a job."""
    try:
        code = await discount_service.create_discount_code(
            session,
            job_id=job_id,
            code_name=payload.code_name,
            amount=payload.amount,
            as_percent=payload.as_percent,
            start_date=payload.start_date,
            end_date=payload.end_date,
            user_id=user["id"],
        )
        return DiscountCodeResponse.model_validate(code)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except discount_service.DuplicateDiscountCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating discount code: {str(e)}")


@router.post("/api/jobs/{job_id}/discount-codes/bulk", response_model=List[DiscountCodeResponse])
async def bulk_add_discount_codes(
    job_id: int,
    payload: DiscountCodeBulkCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Generate a numbered run of codes; nothing is added if any name is taken."""
    try:
        codes = await discount_service.bulk_add_discount_codes(
            session,
            job_id=job_id,
            prefix=payload.prefix,
            suffix=payload.suffix,
            start_number=payload.start_number,
            count=payload.count,
            amount=payload.amount,
            as_percent=payload.as_percent,
            start_date=payload.start_date,
            end_date=payload.end_date,
            user_id=user["id"],
        )
        return [DiscountCodeResponse.model_validate(code) for code in codes]
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except discount_service.DuplicateDiscountCodeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating discount codes: {str(e)}")


@router.put("/api/jobs/{job_id}/discount-codes/{code_id}", response_model=DiscountCodeResponse)
async def update_discount_code(
    job_id: int,
    code_id: int,
    payload: DiscountCodeUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Change a code's amount, type, window or active flag."""
    try:
        return await discount_service.update_discount_code(
            session,
            job_id=job_id,
            code_id=code_id,
            amount=payload.amount,
            as_percent=payload.as_percent,
            start_date=payload.start_date,
            end_date=payload.end_date,
            active=payload.active,
            user_id=user["id"],
        )
    except discount_service.DiscountCodeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating discount code: {str(e)}")


@router.delete("/api/jobs/{job_id}/discount-codes/{code_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_discount_code(
    job_id: int,
    code_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a code no registration has used."""
    try:
        await discount_service.delete_discount_code(session, job_id=job_id, code_id=code_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except discount_service.DiscountCodeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except discount_service.DiscountCodeInUseError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting discount code: {str(e)}")


@router.post("/api/jobs/{job_id}/discount-codes/batch-status", response_model=BatchStatusResponse)
async def batch_update_status(
    job_id: int,
    payload: DiscountCodeBatchStatus,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Activate or deactivate several of the job's codes."""
    try:
        updated = await discount_service.batch_update_status(
            session, job_id=job_id, code_ids=payload.code_ids, active=payload.active, user_id=user["id"]
        )
        return BatchStatusResponse(updated_count=updated)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating discount codes: {str(e)}")


@router.get("/api/jobs/{job_id}/discount-codes/check-exists/{code_name}", response_model=CodeExistsResponse)
async def check_code_exists(
    job_id: int,
    code_name: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Whether the job already has a code with this name (case-insensitive)."""
    try:
        return CodeExistsResponse(exists=await discount_service.code_exists(session, job_id, code_name))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error checking discount code: {str(e)}")
