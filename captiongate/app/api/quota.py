"""Quota status endpoint."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from captiongate.app.services.identity import CallerIdentity

from .deps import AppServices, get_identity, get_services

router = APIRouter(prefix="/api", tags=["quota"])


@router.get("/quota")
async def get_quota(
    lang: str = Query("en"),
    identity: CallerIdentity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Report today's quota without consuming any of it."""
    decision = await services.orchestrator.check_quota(identity, "zh" if lang == "zh" else "en")
    return JSONResponse(
        status_code=decision.status_code,
        content=decision.to_response(),
        headers=decision.headers,
    )
