"""
FastAPI Application Entry Point

The status API runs inside the engine process and reads the engine
attached to app.state; it never owns the engine lifecycle.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from alert_engine.api.router import health, rules
from alert_engine.engine import AlertEngine
from alert_engine.exception import AlertEngineError

logger = logging.getLogger("AlertEngineAPI")


def create_application(engine: AlertEngine) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Running AlertEngine instance

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="Alert Evaluation Engine API",
        description="Rule state inspection and operator actions",
        version="1.0.0",
    )
    app.state.engine = engine

    add_error_handlers(app)

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(rules.router, prefix="/api/rules", tags=["Rules"])

    return app


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AlertEngineError)
    async def engine_error_handler(request: Request, exc: AlertEngineError):
        logger.error(f"AlertEngineError on {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"status": "error", "message": str(exc)})
