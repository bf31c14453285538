"""
Dependency Injection Functions
==============================

FastAPI dependencies for the pipeline and the session store. Both are
built once in the application lifespan and stored in `app_state`.
"""

from fastapi import HTTPException, status

from core.pipeline import ExaminationPipeline
from api.services.session_manager import SessionManager


def get_pipeline() -> ExaminationPipeline:
    """
    Dependency to get the pipeline instance from app state.

    Returns:
        ExaminationPipeline: The configured pipeline instance

    Raises:
        HTTPException: If pipeline is not initialized
    """
    from api.main import app_state

    pipeline = app_state.get("pipeline")
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized. Service is starting up."
        )
    return pipeline


def get_session_manager() -> SessionManager:
    """
    Dependency to get the session store.

    Creates an in-memory SessionManager if the lifespan did not set one
    (e.g. when routes are mounted on a bare app in tests).
    """
    from api.main import app_state

    if "session_manager" not in app_state:
        app_state["session_manager"] = SessionManager()
    return app_state["session_manager"]
