"""
Health Check Endpoints
======================

API health check endpoints for monitoring and Kubernetes probes.
"""

import asyncio
import logging
import time
import psutil
from datetime import datetime
from typing import Dict, Optional
from enum import Enum

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from config import Settings, get_settings
from api.dependencies import get_pipeline, get_session_manager
from api.services.session_manager import SessionManager
from core.pipeline import ExaminationPipeline


# Set up module logger
logger = logging.getLogger(__name__)

router = APIRouter()


class ServiceStatus(str, Enum):
    """Service health status enumeration."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthStatus(str, Enum):
    """Overall application health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ServiceCheckResult(BaseModel):
    """Result of an individual service health check."""
    status: ServiceStatus = Field(description="Service health status")
    message: Optional[str] = Field(None, description="Status message or error details")
    latency_ms: Optional[float] = Field(None, description="Check latency in milliseconds")


class SystemMetrics(BaseModel):
    """System resource metrics."""
    cpu_percent: float = Field(description="CPU usage percentage")
    memory_percent: float = Field(description="Memory usage percentage")
    memory_available_mb: float = Field(description="Available memory in MB")
    disk_usage_percent: float = Field(description="Disk usage percentage")


class HealthCheckResponse(BaseModel):
    """Comprehensive health check response."""
    status: HealthStatus = Field(description="Overall health status")
    timestamp: str = Field(description="ISO 8601 timestamp of the health check")
    services: Dict[str, ServiceCheckResult] = Field(description="Individual service statuses")
    system_metrics: SystemMetrics = Field(description="System resource metrics")


class ReadinessResponse(BaseModel):
    """Kubernetes readiness probe response."""
    status: str = Field(description="Readiness status")
    message: str = Field(description="Status message")
    timestamp: str = Field(description="ISO 8601 timestamp")


class LivenessResponse(BaseModel):
    """Kubernetes liveness probe response."""
    status: str = Field(description="Liveness status")
    timestamp: str = Field(description="ISO 8601 timestamp")


async def check_redis(session_manager: SessionManager) -> ServiceCheckResult:
    """
    Check Redis connectivity and health.

    Args:
        session_manager: SessionManager holding the Redis client

    Returns:
        ServiceCheckResult with Redis health status
    """
    if session_manager.redis_client is None:
        return ServiceCheckResult(
            status=ServiceStatus.DEGRADED,
            message="Redis not configured, using in-memory fallback"
        )

    try:
        start_time = time.time()
        await session_manager.redis_client.ping()
        latency_ms = (time.time() - start_time) * 1000

        return ServiceCheckResult(
            status=ServiceStatus.HEALTHY,
            message="Connected",
            latency_ms=round(latency_ms, 2)
        )
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Connection failed: {str(e)}"
        )


def _model_matches(configured: str, available: str) -> bool:
    """Untagged names match any tag ("qwen2.5" ~ "qwen2.5:7b"); tagged names must match exactly."""
    if ":" in configured:
        return configured == available
    return available.split(":")[0] == configured


async def check_ollama(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> ServiceCheckResult:
    """
    Check Ollama connectivity and model availability.

    Uses Ollama's /api/tags listing instead of running inference, so the
    check stays under the 2 second timeout. Both the note model and the
    expert model used by the Advisor must be pulled.

    Args:
        settings: Application settings
        transport: Optional httpx transport (tests)

    Returns:
        ServiceCheckResult with Ollama health status
    """
    start_time = time.time()
    try:
        async with httpx.AsyncClient(timeout=2.0, transport=transport) as client:
            response = await client.get(f"{settings.ollama_base_url}/api/tags")
    except httpx.TimeoutException:
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Ollama connection timeout (2s) at {settings.ollama_base_url}"
        )
    except httpx.HTTPError:
        logger.warning(f"Cannot connect to Ollama at {settings.ollama_base_url}")
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Cannot connect to Ollama at {settings.ollama_base_url}"
        )

    if response.status_code != 200:
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Ollama API returned status {response.status_code}"
        )

    try:
        models = response.json().get("models", [])
    except ValueError:
        models = []
    model_names = [m.get("name", "") for m in models]

    required = {settings.ollama_model, settings.ollama_expert_model}
    missing = [
        model for model in sorted(required)
        if not any(_model_matches(model, name) for name in model_names)
    ]
    if missing:
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Models not found: {', '.join(missing)}. Run: ollama pull {missing[0]}"
        )

    latency_ms = (time.time() - start_time) * 1000
    return ServiceCheckResult(
        status=ServiceStatus.HEALTHY,
        message=f"Models {', '.join(sorted(required))} available",
        latency_ms=round(latency_ms, 2)
    )


def check_knowledge_base(pipeline: ExaminationPipeline) -> ServiceCheckResult:
    """
    Report whether the protocol index is built and non-empty.

    An empty knowledge base is degraded, not unhealthy: the Advisor still
    answers, only without references.
    """
    retriever = pipeline.retriever
    if not retriever.is_initialized:
        return ServiceCheckResult(
            status=ServiceStatus.DEGRADED,
            message="Index not built yet"
        )
    if retriever.chunk_count == 0:
        return ServiceCheckResult(
            status=ServiceStatus.DEGRADED,
            message="Knowledge base is empty"
        )
    return ServiceCheckResult(
        status=ServiceStatus.HEALTHY,
        message=f"{retriever.chunk_count} chunks indexed"
    )


def get_system_metrics() -> SystemMetrics:
    """
    Gather system resource metrics.

    Returns:
        SystemMetrics with CPU, memory, and disk usage
    """
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)

        memory = psutil.virtual_memory()
        memory_available_mb = memory.available / (1024 * 1024)

        disk = psutil.disk_usage('/')

        return SystemMetrics(
            cpu_percent=round(cpu_percent, 2),
            memory_percent=round(memory.percent, 2),
            memory_available_mb=round(memory_available_mb, 2),
            disk_usage_percent=round(disk.percent, 2)
        )
    except Exception as e:
        logger.error(f"Failed to gather system metrics: {e}")
        return SystemMetrics(
            cpu_percent=0.0,
            memory_percent=0.0,
            memory_available_mb=0.0,
            disk_usage_percent=0.0
        )


def determine_overall_status(services: Dict[str, ServiceCheckResult]) -> HealthStatus:
    """
    Determine overall health status based on individual service statuses.

    Logic:
    - UNHEALTHY: a critical service (API, Ollama) is unhealthy
    - DEGRADED: any other service is unhealthy or degraded
    - HEALTHY: everything is healthy

    Args:
        services: Dictionary of service check results

    Returns:
        Overall HealthStatus
    """
    critical_services = ["ollama", "api"]

    for service_name in critical_services:
        if service_name in services and services[service_name].status == ServiceStatus.UNHEALTHY:
            return HealthStatus.UNHEALTHY

    if any(s.status != ServiceStatus.HEALTHY for s in services.values()):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Comprehensive health check",
    description="""
    Comprehensive health check endpoint that checks all services and system metrics.

    This endpoint verifies:
    - API service availability
    - Ollama connectivity and model availability
    - Redis connectivity (or in-memory fallback status)
    - Knowledge base index state
    - System resource metrics (CPU, memory, disk)

    Returns HTTP 200 with detailed status information even if some services are degraded.
    Use the 'status' field to determine overall health.
    """
)
async def health_check(
    pipeline: ExaminationPipeline = Depends(get_pipeline),
    session_manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings)
) -> HealthCheckResponse:
    """
    Perform comprehensive health check of all services.

    Args:
        pipeline: Injected pipeline instance
        session_manager: Injected session store
        settings: Injected application settings

    Returns:
        HealthCheckResponse with detailed service statuses and system metrics
    """
    logger.debug("Performing comprehensive health check")

    services = {
        "api": ServiceCheckResult(
            status=ServiceStatus.HEALTHY,
            message="API is running"
        ),
        "redis": await check_redis(session_manager),
        "ollama": await check_ollama(settings),
        "knowledge_base": check_knowledge_base(pipeline)
    }

    # cpu_percent samples for 100ms; keep it off the event loop
    system_metrics = await asyncio.to_thread(get_system_metrics)
    overall_status = determine_overall_status(services)

    logger.info(f"Health check completed: {overall_status.value}")
    if overall_status != HealthStatus.HEALTHY:
        unhealthy_services = [
            name for name, check in services.items()
            if check.status != ServiceStatus.HEALTHY
        ]
        logger.warning(f"Unhealthy/degraded services: {unhealthy_services}")

    return HealthCheckResponse(
        status=overall_status,
        timestamp=datetime.utcnow().isoformat() + "Z",
        services=services,
        system_metrics=system_metrics
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Kubernetes readiness probe",
    description="""
    Kubernetes readiness probe endpoint.

    Returns:
    - HTTP 200 if the pipeline is loaded and Ollama serves the configured models
    - HTTP 503 otherwise
    """
)
async def readiness_probe(
    pipeline: ExaminationPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings)
) -> ReadinessResponse:
    """
    Check if the application is ready to serve traffic.

    Raises:
        HTTPException: 503 if Ollama is not ready
    """
    ollama_result = await check_ollama(settings)
    if ollama_result.status == ServiceStatus.UNHEALTHY:
        logger.warning(f"Readiness probe failed: {ollama_result.message}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Ollama not ready: {ollama_result.message}"
        )

    logger.debug("Readiness probe: READY")
    return ReadinessResponse(
        status="ready",
        message="Application is ready to serve traffic",
        timestamp=datetime.utcnow().isoformat() + "Z"
    )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    status_code=status.HTTP_200_OK,
    summary="Kubernetes liveness probe"
)
async def liveness_probe() -> LivenessResponse:
    """
    Check if the application process is alive.

    Does not check external dependencies; that is what readiness is for.
    """
    logger.debug("Liveness probe: ALIVE")
    return LivenessResponse(
        status="alive",
        timestamp=datetime.utcnow().isoformat() + "Z"
    )
