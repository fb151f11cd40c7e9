"""
ClearClause Contract Analyzer - FastAPI Application
Contract analysis on the local model with remote fallback, plus model lifecycle endpoints.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..errors import (
    ClearClauseError, ConfigurationError, FallbackFailure, InvalidInput,
    ModelNotLoaded, OperationTimeoutError, ResourceExhausted
)
from ..models.config import settings
from ..models.schemas import AnalyzeRequest, ErrorResponse
from ..routing.router import ContractAnalysisRouter, create_analysis_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# First match wins; OperationTimeoutError is checked before its TimeoutError base
STATUS_BY_ERROR = (
    (InvalidInput, 400),
    (ConfigurationError, 422),
    (ModelNotLoaded, 409),
    (OperationTimeoutError, 504),
    (ResourceExhausted, 503),
    (FallbackFailure, 503),
)

api = APIRouter()


def get_router(request: Request) -> ContractAnalysisRouter:
    return request.app.state.router


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, timestamp=datetime.utcnow().isoformat())
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _model_status(router: ContractAnalysisRouter) -> dict:
    status = router.resource_manager.get_status().model_dump(mode="json")
    status["memory_utilization"] = round(router.resource_manager.memory_utilization, 4)
    return status


# Health check endpoint
@api.get("/health")
async def health_check(router: ContractAnalysisRouter = Depends(get_router)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.ENVIRONMENT,
        "model": _model_status(router)
    }


@api.post("/v1/analyze")
async def analyze_contract(
    request: AnalyzeRequest,
    router: ContractAnalysisRouter = Depends(get_router)
):
    """
    Analyze a contract.

    Uses the local model when it is loaded and falls back to the remote
    analysis service otherwise. Both paths return the same camelCase schema.
    """
    result = await router.analyze(request.text, request.options)
    return result.to_response()


@api.get("/v1/model/status")
async def model_status(router: ContractAnalysisRouter = Depends(get_router)):
    """Current model state and request counters."""
    return {
        "state": _model_status(router),
        "performance": router.resource_manager.performance_metrics()
    }


@api.post("/v1/model/load")
async def load_model(router: ContractAnalysisRouter = Depends(get_router)):
    """Load the configured model."""
    await router.resource_manager.load()
    return _model_status(router)


@api.post("/v1/model/unload")
async def unload_model(router: ContractAnalysisRouter = Depends(get_router)):
    """Unload the model. Idempotent."""
    await router.resource_manager.unload()
    return _model_status(router)


@api.post("/v1/model/optimize")
async def optimize_model_memory(router: ContractAnalysisRouter = Depends(get_router)):
    """Release reclaimable memory without unloading."""
    freed = await router.resource_manager.optimize_memory()
    return {"freed_mb": round(freed, 2), "state": _model_status(router)}


@api.get("/v1/stats")
async def get_stats(router: ContractAnalysisRouter = Depends(get_router)):
    """Router, admission queue and analysis metrics."""
    return {
        "router": router.stats().as_dict(),
        "queue": router.queue.stats().model_dump(),
        "metrics": router.metrics.snapshot(),
        "model": router.resource_manager.performance_metrics()
    }


@api.get("/v1/decisions")
async def get_decisions(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    router: ContractAnalysisRouter = Depends(get_router)
):
    """Recent routing decisions, oldest first."""
    return [decision.model_dump(mode="json") for decision in router.recent_decisions(limit)]


async def clearclause_error_handler(request: Request, exc: ClearClauseError):
    """Map pipeline errors to HTTP status codes."""
    status_code = next(
        (code for error_type, code in STATUS_BY_ERROR if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error(f"Request failed: {exc.kind}: {exc}")
    else:
        logger.warning(f"Request rejected: {exc.kind}: {exc}")
    return _error_response(status_code, exc.kind, str(exc))


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler."""
    logger.error(f"Unhandled exception: {str(exc)}")
    return _error_response(500, "InternalServerError", "Internal server error")


def create_app(router: Optional[ContractAnalysisRouter] = None) -> FastAPI:
    """
    Build the application.

    Args:
        router: Pre-built router; when omitted one is created from settings at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        if getattr(app.state, "router", None) is None:
            app.state.router = create_analysis_router(settings)
        yield
        logger.info("Shutting down")
        await app.state.router.fallback_client.aclose()
        await app.state.router.resource_manager.unload()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Hybrid contract analysis: local model first, remote API fallback",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.router = router

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=settings.ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ClearClauseError, clearclause_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    app.include_router(api)
    return app


app = create_app()
