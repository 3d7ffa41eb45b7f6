"""Health and readiness endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from attempt_engine.api.v1.live import EngineRegistry, get_registry
from attempt_engine.core.errors import get_request_id

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: Literal["ok"]
    live_attempts: int
    request_id: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Simple health check endpoint. Returns 200 if the API is running.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint - just checks if the process is alive."""
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
)
async def readiness_check(
    request: Request,
    registry: EngineRegistry = Depends(get_registry),
) -> ReadinessResponse:
    """Readiness check endpoint - reports how many engines are live."""
    return ReadinessResponse(
        status="ok",
        live_attempts=len(registry),
        request_id=get_request_id(request),
    )
