"""Health check route."""

from fastapi import APIRouter

from leaguereg.models.schemas import HealthResponse

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        HealthResponse: Service status
    """
    return HealthResponse(status="healthy", message="API is running")
