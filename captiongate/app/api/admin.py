"""Operator endpoints for circuit breaker inspection and reset."""

from fastapi import APIRouter, Depends

from captiongate.app.core.logging import get_logger

from .deps import AppServices, get_services, require_admin

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin/circuit-breakers",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("")
async def list_circuit_breakers(services: AppServices = Depends(get_services)) -> dict:
    operations = await services.breaker.backend.operations()
    stats = {}
    for operation in operations:
        stats[operation] = (await services.breaker.get_stats(operation)).to_dict()
    return {"backend": services.breaker.backend.backend_name, "circuitBreakers": stats}


@router.post("/reset")
async def reset_all_circuit_breakers(services: AppServices = Depends(get_services)) -> dict:
    reset = await services.breaker.reset_all()
    logger.warning(f"Operator reset {len(reset)} circuit breaker(s)")
    return {"reset": reset}


@router.get("/{operation}")
async def get_circuit_breaker(operation: str, services: AppServices = Depends(get_services)) -> dict:
    stats = await services.breaker.get_stats(operation)
    return {"operation": operation, **stats.to_dict()}


@router.post("/{operation}/reset")
async def reset_circuit_breaker(operation: str, services: AppServices = Depends(get_services)) -> dict:
    await services.breaker.reset(operation)
    logger.warning("Operator reset circuit breaker", extra={"operation": operation})
    stats = await services.breaker.get_stats(operation)
    return {"operation": operation, **stats.to_dict()}
