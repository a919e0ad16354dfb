"""Primary API router definition."""

from fastapi import APIRouter

from . import attendances, maintenance, points, reports

api_router = APIRouter()

api_router.include_router(points.router)
api_router.include_router(attendances.router)
api_router.include_router(maintenance.router)
api_router.include_router(reports.router)


@api_router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    """Basic health probe endpoint."""
    return {"status": "ok"}
