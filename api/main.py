"""
FastAPI Main Application
========================

Main FastAPI application instance with middleware, routes, and lifespan management.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from api.middleware.error_handler import error_handler_middleware
from api.middleware.rate_limiter import setup_rate_limiting
from api.routes import analysis, health, sessions, transcription
from api.services.session_manager import SessionManager
from config import get_settings, setup_logging
from core.pipeline import create_pipeline

logger = logging.getLogger(__name__)


# Global application state - stores pipeline and other singletons
app_state: Dict[str, Any] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan event handler for startup and shutdown.

    Startup:
    - Builds the pipeline once (shared LLM client, embeddings, retriever)
    - Indexes the knowledge base so the first analysis does not pay for it
    - Connects the session store (Redis or in-memory)

    Shutdown:
    - Closes the session store and clears state
    """
    settings = get_settings()
    setup_logging(settings)

    logger.info("Starting ExamScribe API...")
    logger.info(f"Ollama model: {settings.ollama_model}, expert model: {settings.ollama_expert_model}")

    pipeline = create_pipeline(settings)
    try:
        await pipeline.astartup()
        logger.info("Knowledge base indexed")
    except Exception as e:
        # Retrieval is retried lazily on the first analysis
        logger.warning(f"Knowledge base indexing failed at startup: {e}")

    session_manager = SessionManager(settings)
    await session_manager.aconnect()

    app_state["pipeline"] = pipeline
    app_state["session_manager"] = session_manager
    app_state["settings"] = settings

    logger.info(f"API running at http://{settings.api_host}:{settings.api_port}")
    logger.info(f"Docs available at http://{settings.api_host}:{settings.api_port}/api/docs")

    yield  # Application runs here

    logger.info("Shutting down ExamScribe API...")
    await session_manager.aclose()
    app_state.clear()
    logger.info("Cleanup complete")


# Create FastAPI application
app = FastAPI(
    title="ExamScribe API",
    description="""
    Clinical examination assistant - consultation audio to SOAP note, ICD-10 codes and advice.

    ## Features
    - Speech-to-text with clinician/patient attribution
    - Medical term correction of recognized speech
    - SOAP note generation, ICD-10 coding and protocol-grounded advice
    - Scoring of AI output against the clinician's final record
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware Setup (order matters - first added = outermost)
# =============================================================================

settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In production, set this to your actual domains
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["*"]
)

app.middleware("http")(error_handler_middleware)

setup_rate_limiting(app)


# =============================================================================
# Router Registration
# =============================================================================

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(transcription.router, prefix="/api/v1", tags=["transcription"])
app.include_router(analysis.router, prefix="/api/v1", tags=["analysis"])
app.include_router(sessions.router, prefix="/api/v1", tags=["sessions"])


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """API information and links."""
    return {
        "message": "ExamScribe API",
        "description": "Clinical examination assistant - audio to SOAP note, ICD-10 codes and advice",
        "version": "1.0.0",
        "docs": "/api/docs",
        "redoc": "/api/redoc",
        "health": "/api/v1/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.api_host, port=settings.api_port, reload=settings.api_debug)
