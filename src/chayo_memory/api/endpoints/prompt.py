"""Client system prompt endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from chayo_memory.api.dependencies import bind_organization, get_prompt_builder
from chayo_memory.services.prompt_builder import ClientSystemPromptBuilder

router = APIRouter(dependencies=[Depends(bind_organization)])


class SystemPromptRequest(BaseModel):
    user_query: str = ""
    locale: str | None = None


class SystemPromptResponse(BaseModel):
    organization_id: str
    prompt: str


@router.post("/system-prompt", response_model=SystemPromptResponse)
async def build_system_prompt(
    organization_id: str,
    request: SystemPromptRequest,
    builder: ClientSystemPromptBuilder = Depends(get_prompt_builder),
):
    """Build the system prompt for an organization's client-facing assistant."""
    prompt = await builder.build(organization_id, request.user_query, request.locale)
    return SystemPromptResponse(organization_id=organization_id, prompt=prompt)
