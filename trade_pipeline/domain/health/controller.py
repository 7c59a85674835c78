from fastapi import APIRouter, Depends
from dependency_injector.wiring import inject, Provide
from trade_pipeline.domain.health.service import HealthService
from trade_pipeline.domain.health.module import HealthModule


router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Health check endpoint")
@inject
async def health_check(service: HealthService = Depends(Provide[HealthModule.service]),
                       ) -> dict:
    db_health = await service.check_database_health()
    broker_health = service.check_broker_health()
    # notifications degrade to logging without a broker, trades still execute
    status = "healthy" if db_health else "unhealthy"
    if db_health and not broker_health:
        status = "degraded"
    return {"status": status, "database": db_health, "broker": broker_health}
