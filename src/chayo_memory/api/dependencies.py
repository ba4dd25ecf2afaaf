"""API dependencies.

Services are built once in the application lifespan and kept on
``app.state``; handlers only ever read them from there.
"""

import structlog
from fastapi import HTTPException, Request

from chayo_memory.core.logging import clear_log_context, log_with_context, update_log_context
from chayo_memory.services.memory_service import ConversationMemoryService
from chayo_memory.services.prompt_builder import ClientSystemPromptBuilder


def get_memory_service(request: Request) -> ConversationMemoryService:
    service = getattr(request.app.state, "memory_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return service


def get_prompt_builder(request: Request) -> ClientSystemPromptBuilder:
    builder = getattr(request.app.state, "prompt_builder", None)
    if builder is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return builder


async def bind_organization(organization_id: str) -> str:
    """Tag every log line of the request with its tenant."""
    clear_log_context()
    update_log_context("organization_id", organization_id)
    structlog.contextvars.bind_contextvars(organization_id=organization_id)
    log_with_context("debug", "Request bound to organization", logger_name=__name__)
    return organization_id
