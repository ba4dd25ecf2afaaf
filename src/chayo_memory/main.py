"""Chayo Memory FastAPI application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import logfire
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from neo4j import AsyncDriver

from chayo_memory import __version__
from chayo_memory.api.endpoints import core, memory, prompt
from chayo_memory.core.config import Settings, settings
from chayo_memory.core.handlers import register_exception_handlers
from chayo_memory.core.logging import get_logger, setup_logging
from chayo_memory.infrastructure.embeddings.factory import create_embedding_service
from chayo_memory.infrastructure.neo4j.driver import create_neo4j_driver, ensure_schema
from chayo_memory.infrastructure.repositories.in_memory import InMemorySegmentStore
from chayo_memory.infrastructure.repositories.neo4j_segments import Neo4jSegmentStore
from chayo_memory.infrastructure.repositories.organizations import Neo4jOrganizationDirectory
from chayo_memory.services import EmbeddingGenerator, OrganizationDirectory, VectorStore
from chayo_memory.services.memory_service import ConversationMemoryService
from chayo_memory.services.prompt_builder import ClientSystemPromptBuilder

logger = get_logger(__name__)

API_PREFIX = "/api/v1/organizations/{organization_id}"


def configure_observability(app_settings: Settings) -> None:
    """Configure Logfire and route structlog and stdlib logging through it."""
    logfire.configure(
        service_name=app_settings.service_name,
        token=app_settings.logfire_token,
        send_to_logfire="if-token-present",
        console=False,
    )
    setup_logging(level=logging.DEBUG if app_settings.debug else logging.INFO)


async def _build_services(app: FastAPI, app_settings: Settings) -> None:
    """Construct store, embedder and services for the configured backend."""
    embeddings: EmbeddingGenerator = create_embedding_service(app_settings)
    store: VectorStore
    organizations: OrganizationDirectory | None = None

    if app_settings.vector_store_backend == "neo4j":
        logger.info("Initializing Neo4j connection...")
        driver = await create_neo4j_driver(app_settings)
        app.state.neo4j_driver = driver
        await ensure_schema(driver)
        store = Neo4jSegmentStore(driver, dimensions=embeddings.dimensions)
        organizations = Neo4jOrganizationDirectory(driver)
    else:
        logger.warning("Using the in-memory vector store; segments are lost on restart")
        store = InMemorySegmentStore(dimensions=embeddings.dimensions)

    app.state.memory_service = ConversationMemoryService(
        embeddings=embeddings,
        store=store,
        settings=app_settings,
        organizations=organizations,
    )


def create_app(
    app_settings: Settings | None = None,
    memory_service: ConversationMemoryService | None = None,
) -> FastAPI:
    """Create the application.

    A prebuilt ``memory_service`` skips construction from settings in the
    lifespan; tests use this to run against the in-memory store.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        logger.info("Starting Chayo Memory...")
        try:
            if app.state.memory_service is None:
                await _build_services(app, app_settings)
            app.state.prompt_builder = ClientSystemPromptBuilder(app.state.memory_service, app_settings)
            logger.info("Chayo Memory started")
            yield
        finally:
            logger.info("Shutting down Chayo Memory...")
            driver: AsyncDriver | None = app.state.neo4j_driver
            if driver is not None:
                await driver.close()
                logger.info("Neo4j connection closed")

    app = FastAPI(
        title="Chayo Memory API",
        description="Conversation memory and conflict-aware business knowledge for chat assistants",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.memory_service = memory_service
    app.state.prompt_builder = None
    app.state.neo4j_driver = None

    if app_settings.instrument_fastapi:
        logfire.instrument_fastapi(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(memory.router, prefix=API_PREFIX, tags=["memory"])
    app.include_router(prompt.router, prefix=API_PREFIX, tags=["prompt"])
    app.include_router(core.router)
    return app


def main() -> None:
    """Development server entry point."""
    configure_observability(settings)
    logger.info("Starting Chayo Memory development server...")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_level="info", access_log=True)


if __name__ == "__main__":
    main()
