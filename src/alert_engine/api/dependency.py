"""FastAPI Dependency Injection"""

from fastapi import Request

from alert_engine.engine import AlertEngine


def get_engine(request: Request) -> AlertEngine:
    """Provide the AlertEngine attached to app state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("AlertEngine is not attached to app.state")
    return engine
