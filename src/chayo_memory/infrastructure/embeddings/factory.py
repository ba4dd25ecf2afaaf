"""Construction of the embedding generator from settings.

Services receive the generator through their constructors; nothing here
keeps a module-level instance.
"""

from chayo_memory.core.base import ServiceErrorDetails
from chayo_memory.core.config import Settings
from chayo_memory.core.decorators import with_error_handling
from chayo_memory.core.errors import UpstreamError
from chayo_memory.core.logging import get_logger
from chayo_memory.infrastructure.embeddings.voyage import VoyageEmbeddingService

logger = get_logger(__name__)


@with_error_handling(reraise=True)
def create_embedding_service(settings: Settings) -> VoyageEmbeddingService:
    """Build the Voyage embedding service described by ``settings``.

    Raises:
        AuthenticationError: If no API key is configured
        UpstreamError: If the configured dimensions are not usable
    """
    logger.info(f"Creating VoyageEmbeddingService with model {settings.voyage_model}")
    service = VoyageEmbeddingService(
        api_key=settings.voyage_api_key,
        model=settings.voyage_model,
        dimensions=settings.embedding_dimensions,
        batch_size=settings.embedding_batch_size,
    )
    validate_embedding_service(service)
    return service


def validate_embedding_service(service: VoyageEmbeddingService) -> None:
    dimensions = service.dimensions
    if dimensions <= 0:
        raise UpstreamError(
            message=f"Invalid embedding dimensions: {dimensions}",
            details=ServiceErrorDetails(
                source="embedding_factory",
                operation="validate",
                service_name=type(service).__name__,
            ),
        )
    logger.info(f"Embedding service validated: dimensions={dimensions}")
