"""Voyage AI embedding service."""

import asyncio
from typing import Any, cast

import voyageai
import voyageai.error

from chayo_memory.core.base import AIServiceErrorDetails, ErrorLevel, ValidationErrorDetails
from chayo_memory.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from chayo_memory.core.decorators import with_error_handling
from chayo_memory.core.errors import (
    AuthenticationError,
    EmbeddingError,
    RateLimitError,
    TimeoutError,
    UpstreamError,
    ValidationError,
)
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import EmbeddingRequest, EmbeddingType

logger = get_logger(__name__)

MODEL_DIMENSIONS = {
    "voyage-3-large": 1024,
    "voyage-3": 1024,
    "voyage-3-lite": 512,
    "voyage-3.5": 1024,
    "voyage-3.5-lite": 1024,
    "voyage-multilingual-2": 1024,
    "voyage-large-2": 1536,
    "voyage-code-2": 1536,
}

# Voyage accepts at most 128 texts per request
MAX_BATCH_SIZE = 128


class VoyageEmbeddingService:
    """Voyage AI embedding service implementation.

    Order is preserved and a batch either fully succeeds or raises. Queries
    and stored text are embedded with different Voyage input types.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "voyage-3",
        dimensions: int | None = None,
        batch_size: int = MAX_BATCH_SIZE,
        client: Any | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
    ) -> None:
        """Initialize the Voyage embedding service.

        Args:
            api_key: Voyage API key; required unless ``client`` is given
            model: Voyage model name
            dimensions: Override for models missing from ``MODEL_DIMENSIONS``
            batch_size: Texts per API request
            client: Pre-built async client (anything with an awaitable ``embed``)
            circuit_breaker: Shared breaker; a private one is created otherwise

        Raises:
            AuthenticationError: If neither an API key nor a client is provided
        """
        if client is None:
            if not api_key:
                raise AuthenticationError(
                    message="Voyage API key not configured",
                    details=AIServiceErrorDetails(
                        source="VoyageEmbeddingService",
                        operation="initialization",
                        service_name="Voyage AI",
                        model_name=model,
                    ),
                )
            # Retries are ours, through the circuit breaker
            client = voyageai.AsyncClient(api_key=api_key, max_retries=0)

        self.client = client
        self.model = model
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self._dimensions = dimensions or MODEL_DIMENSIONS.get(model, 1024)

        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            name="voyage_api",
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exception_types=(UpstreamError,),
            success_threshold=2,
        )
        self._retry_handler = RetryWithCircuitBreaker(
            circuit_breaker=self._circuit_breaker,
            max_retries=max_retries,
            initial_delay=initial_delay,
            backoff_factor=2.0,
            max_delay=30.0,
            retryable_exceptions=(RateLimitError, TimeoutError),
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _call_voyage_api(self, texts: list[str], input_type: str, batch_index: int) -> list[list[float]]:
        """Call the Voyage API once for one batch; wrapped by the circuit breaker."""
        try:
            response = await self.client.embed(texts=texts, model=self.model, input_type=input_type)
        except voyageai.error.InvalidRequestError as e:
            raise ValidationError(
                f"Voyage rejected the request: {e}",
                details=ValidationErrorDetails(
                    source="VoyageEmbeddingService",
                    operation="embed_batch",
                    field="texts",
                    constraint="accepted by the embedding model",
                ),
            ) from e
        except Exception as e:
            raise self._handle_error(e, batch_index, texts) from e

        embeddings = getattr(response, "embeddings", None) or []
        if len(embeddings) != len(texts):
            raise EmbeddingError(
                message=f"Voyage returned {len(embeddings)} embeddings for {len(texts)} texts",
                details=self._details(batch_index, texts, status_code=200),
            )
        return [cast("list[float]", list(embedding)) for embedding in embeddings]

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def generate_embeddings(self, items: list[EmbeddingRequest]) -> list[list[float]]:
        """
        Generate one vector per item, in input order.

        Items are grouped by Voyage input type, then split into API-sized
        batches; every batch must succeed for any vector to be returned.

        Raises:
            ValidationError: If any item has empty text
            UpstreamError: If the provider fails or returns a short response
        """
        if not items:
            return []

        for index, item in enumerate(items):
            if not item.text or not item.text.strip():
                raise ValidationError(
                    f"Cannot embed empty text (item {index})",
                    details=ValidationErrorDetails(
                        source="VoyageEmbeddingService",
                        operation="generate_embeddings",
                        field=f"items[{index}].text",
                        constraint="non-empty",
                    ),
                )

        by_input_type: dict[str, list[int]] = {}
        for index, item in enumerate(items):
            by_input_type.setdefault(item.type.input_type, []).append(index)

        results: list[list[float] | None] = [None] * len(items)
        batch_index = 0
        for input_type, indices in by_input_type.items():
            for start in range(0, len(indices), self.batch_size):
                batch = indices[start : start + self.batch_size]
                vectors = await self._retry_handler.call_async(
                    self._call_voyage_api,
                    [items[i].text for i in batch],
                    input_type,
                    batch_index,
                )
                for i, vector in zip(batch, vectors, strict=True):
                    results[i] = vector
                batch_index += 1

        logger.debug(
            f"Generated {len(items)} embeddings in {batch_index} batch(es)",
            extra={"model": self.model, "count": len(items)},
        )
        return cast("list[list[float]]", results)

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query."""
        vectors = await self.generate_embeddings([EmbeddingRequest(text=text, type=EmbeddingType.QUERY)])
        return vectors[0]

    def _details(self, batch_index: int, texts: list[str], status_code: int | None = None) -> AIServiceErrorDetails:
        return AIServiceErrorDetails(
            source="VoyageEmbeddingService",
            operation="embed_batch",
            service_name="Voyage AI",
            endpoint="/embeddings",
            status_code=status_code,
            model_name=self.model,
            batch_size=len(texts),
            extra={"batch_index": batch_index},
        )

    def _handle_error(self, e: Exception, batch_index: int, texts: list[str]) -> UpstreamError:
        """Map client errors to our exception types."""
        error_msg = str(e).lower()

        if isinstance(e, voyageai.error.RateLimitError) or "rate limit" in error_msg:
            return RateLimitError(
                message="Rate limit exceeded for embeddings API",
                details=self._details(batch_index, texts, status_code=429),
            )
        if isinstance(e, voyageai.error.Timeout | voyageai.error.APIConnectionError | asyncio.TimeoutError) or (
            "timeout" in error_msg or "timed out" in error_msg
        ):
            return TimeoutError(
                message="Embeddings API request timed out",
                details=self._details(batch_index, texts, status_code=408),
            )
        if isinstance(e, voyageai.error.AuthenticationError) or "api key" in error_msg:
            return AuthenticationError(
                message="Authentication failed for embeddings API",
                details=self._details(batch_index, texts, status_code=401),
            )

        return EmbeddingError(
            message=f"Failed to generate embeddings: {e!s}",
            details=self._details(batch_index, texts),
        )

    async def close(self) -> None:
        """The Voyage async client holds no connections that need closing."""
