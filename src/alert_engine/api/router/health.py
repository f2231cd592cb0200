"""
Health Check Router

Liveness and engine counters.
"""

import platform

from fastapi import APIRouter, Depends

from alert_engine.api.dependency import get_engine
from alert_engine.engine import AlertEngine
from alert_engine.util.time_util import now_utc

router = APIRouter()


@router.get("/health", summary="Health Check", description="Check whether the evaluation engine is running")
async def health_check(engine: AlertEngine = Depends(get_engine)):
    """
    Engine health.

    Returns:
        dict: Engine status information.
    """
    return {
        "status": "healthy" if engine.is_running else "stopped",
        "timestamp": now_utc().isoformat(),
        "service": "Alert Evaluation Engine",
        "rules": len(engine.registry),
        "firing": len(engine.state_manager.get_all_firing()),
        "in_flight": len(engine.scheduler.in_flight),
        "python_version": platform.python_version(),
    }


@router.get("/metrics", summary="Engine counters", description="Operational counters since start-up")
async def metrics(engine: AlertEngine = Depends(get_engine)):
    return {"timestamp": now_utc().isoformat(), "counters": engine.metrics.snapshot()}


@router.get("/ping", summary="Ping", description="Simple connectivity test")
async def ping():
    return {"message": "pong"}
