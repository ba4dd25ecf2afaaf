"""Service status endpoints."""

from fastapi import APIRouter, Request

from chayo_memory import __version__
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models.utils import utc_now

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def root(request: Request):
    """Root endpoint with application status."""
    settings = request.app.state.settings
    return {
        "message": "Chayo Memory API",
        "version": __version__,
        "status": "running",
        "vector_store": settings.vector_store_backend,
        "embedding_model": settings.voyage_model,
    }


@router.get("/health", operation_id="health")
async def health_check(request: Request):
    """Health check endpoint."""
    ready = getattr(request.app.state, "memory_service", None) is not None
    return {"status": "healthy" if ready else "starting", "timestamp": utc_now().isoformat()}
