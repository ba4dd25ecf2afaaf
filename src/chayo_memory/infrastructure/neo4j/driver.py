"""Neo4j driver and connection management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from chayo_memory.core.base import DatabaseErrorDetails, ErrorLevel
from chayo_memory.core.config import Settings
from chayo_memory.core.decorators import with_error_handling
from chayo_memory.core.errors import StorageError
from chayo_memory.core.logging import get_logger
from chayo_memory.infrastructure.neo4j.queries import SegmentQueries

logger = get_logger(__name__)


@with_error_handling(error_level=ErrorLevel.ERROR)
async def create_neo4j_driver(settings: Settings, max_connection_lifetime: int = 3600) -> AsyncDriver:
    """Create a Neo4j driver and verify it can reach the server.

    The caller owns the driver and must close it on shutdown.

    Raises:
        StorageError: If the server cannot be reached
    """
    logger.info(
        "Creating Neo4j driver",
        extra={
            "uri": settings.neo4j_uri,
            "pool_size": settings.neo4j_max_pool_size,
            "connection_lifetime": max_connection_lifetime,
        },
    )

    driver = AsyncGraphDatabase.driver(
        settings.neo4j_uri,
        auth=(settings.neo4j_user, settings.neo4j_password),
        max_connection_pool_size=settings.neo4j_max_pool_size,
        max_connection_lifetime=max_connection_lifetime,
    )

    async with translate_neo4j_errors("verify_connectivity"):
        await driver.verify_connectivity()
    logger.info("Neo4j connection established")
    return driver


@with_error_handling(error_level=ErrorLevel.ERROR)
async def ensure_schema(driver: AsyncDriver) -> None:
    """Create the uniqueness constraint and tenant index if missing."""
    async with translate_neo4j_errors("ensure_schema"), driver.session() as session:
        for statement in SegmentQueries.schema():
            await session.run(statement)
    logger.info("Neo4j schema ensured")


@asynccontextmanager
async def translate_neo4j_errors(
    operation: str,
    organization_id: str | None = None,
    query_type: str | None = None,
) -> AsyncIterator[None]:
    """Re-raise driver and server failures as ``StorageError``."""
    try:
        yield
    except (Neo4jError, DriverError) as e:
        raise StorageError(
            message=f"Neo4j {operation} failed: {e}",
            details=DatabaseErrorDetails(
                source="neo4j",
                operation=operation,
                organization_id=organization_id,
                service_name="Neo4j",
                query_type=query_type,
                label="MemorySegment",
            ),
        ) from e
