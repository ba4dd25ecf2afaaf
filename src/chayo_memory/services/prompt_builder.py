"""Client-facing system prompt assembly.

The prompt confines the assistant to one business: what the memory service
knows about it, which tools it has, and the rules it must follow.
"""

from dataclasses import dataclass

from chayo_memory.core.config import Settings
from chayo_memory.core.errors import UpstreamError
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import MemorySegment
from chayo_memory.services.memory_service import ConversationMemoryService

logger = get_logger(__name__)

FALLBACK_BUSINESS_NAME = "this business"


@dataclass(frozen=True)
class PromptText:
    intro: str
    response_language: str
    knowledge_heading: str
    no_knowledge: str
    tools_heading: str
    tools_intro: str
    tools_usage: str
    tool_descriptions: dict[str, str]
    generic_tool: str
    faq_heading: str
    faq_lines: tuple[str, ...]
    rules_heading: str
    rules: tuple[str, ...]
    faq_rule: str
    name_rule: str


PROMPT_TEXT: dict[str, PromptText] = {
    "es": PromptText(
        intro=(
            "Eres Chayo, la asistente de IA de {business_name}. SOLO respondes como la asistente de este "
            "negocio en específico. NO respondas por otros negocios ni sobre temas generales."
        ),
        response_language="Responde siempre en español.",
        knowledge_heading="## Conocimiento del negocio (documentos internos, FAQs y conversaciones previas):",
        no_knowledge=(
            "- Aún no se encontró conocimiento del negocio. Por favor proporciona más información del negocio."
        ),
        tools_heading="## Herramientas disponibles:",
        tools_intro="Tienes acceso a las siguientes herramientas para ayudar a los clientes:",
        tools_usage=(
            "Usa estas herramientas automáticamente cuando los clientes pregunten sobre estos temas. No "
            "necesitas pedir permiso: simplemente usa la función apropiada para obtener la información más "
            "actualizada."
        ),
        tool_descriptions={
            "products": (
                "- **Productos y Servicios**: Puedes buscar y mostrar información sobre productos, servicios, "
                "precios y ofertas disponibles."
            ),
            "appointments": (
                "- **Citas y Reservas**: Puedes consultar disponibilidad, horarios y ayudar con el agendamiento "
                "de citas."
            ),
            "faqs": (
                "- **Preguntas Frecuentes**: Puedes responder preguntas comunes usando la base de conocimiento "
                "de FAQs."
            ),
        },
        generic_tool="- **{tool}**: Herramienta disponible para asistencia.",
        faq_heading="## Herramienta de Preguntas Frecuentes Disponible:",
        faq_lines=(
            "- Si las personas preguntan específicamente por FAQs o preguntas frecuentes, puedes dirigirlas a: "
            "{faq_link}",
            "- SOLO sugiere la página de FAQs cuando lo pidan explícitamente.",
        ),
        rules_heading="## Reglas críticas:",
        rules=(
            "- Responde SOLO usando el conocimiento del negocio descrito arriba.",
            "- Enfócate en ayudar a los clientes con preguntas sobre este negocio.",
            "- Si no sabes la respuesta, indica que no tienes esa información y solicita más detalles.",
            "- NUNCA respondas por otros negocios ni des consejos genéricos.",
            "- Mantén siempre un tono profesional, útil y enfocado en este negocio.",
            "- Si el usuario pregunta sobre algo que no está relacionado con este negocio, redirígelo de forma "
            "amable al tema del negocio.",
        ),
        faq_rule="- Dirige a las personas a las FAQs únicamente cuando las pidan: {faq_link}",
        name_rule="- Usa el nombre del negocio ({business_name}) cuando corresponda para reforzar su identidad.",
    ),
    "en": PromptText(
        intro=(
            "You are Chayo, the AI assistant for {business_name}. You ONLY answer as the assistant of this "
            "specific business. Do NOT answer for other businesses or about general topics."
        ),
        response_language="Always answer in English.",
        knowledge_heading="## Business knowledge (internal documents, FAQs and previous conversations):",
        no_knowledge="- No business knowledge found yet. Please provide more information about the business.",
        tools_heading="## Available tools:",
        tools_intro="You have access to the following tools to help customers:",
        tools_usage=(
            "Use these tools automatically when customers ask about these topics. You do not need to ask for "
            "permission: just use the appropriate function to get the most up-to-date information."
        ),
        tool_descriptions={
            "products": (
                "- **Products and Services**: You can look up and show products, services, prices and current "
                "offers."
            ),
            "appointments": (
                "- **Appointments and Bookings**: You can check availability and opening hours and help book "
                "appointments."
            ),
            "faqs": "- **Frequently Asked Questions**: You can answer common questions from the FAQ knowledge base.",
        },
        generic_tool="- **{tool}**: Tool available for assistance.",
        faq_heading="## Frequently Asked Questions tool available:",
        faq_lines=(
            "- If people specifically ask for FAQs or frequently asked questions, you can point them to: "
            "{faq_link}",
            "- ONLY suggest the FAQ page when explicitly asked.",
        ),
        rules_heading="## Critical rules:",
        rules=(
            "- Answer ONLY using the business knowledge described above.",
            "- Focus on helping customers with questions about this business.",
            "- If you do not know the answer, say you do not have that information and ask for more details.",
            "- NEVER answer for other businesses or give generic advice.",
            "- Always keep a professional, helpful tone focused on this business.",
            "- If the user asks about something unrelated to this business, kindly steer them back to it.",
        ),
        faq_rule="- Point people to the FAQs only when they ask for them: {faq_link}",
        name_rule="- Use the business name ({business_name}) when appropriate to reinforce its identity.",
    ),
}


class ClientSystemPromptBuilder:
    def __init__(self, memory: ConversationMemoryService, settings: Settings):
        self.memory = memory
        self.settings = settings

    async def _knowledge(self, organization_id: str, user_query: str) -> list[MemorySegment]:
        # Retrieval failures degrade to "no knowledge"; the chat must still get a prompt
        try:
            if user_query.strip():
                results = await self.memory.search_by_text(
                    organization_id,
                    user_query,
                    threshold=self.settings.prompt_threshold,
                    limit=self.settings.prompt_chunk_limit,
                )
                return [result.segment for result in results]
            return await self.memory.list_recent(organization_id, self.settings.prompt_chunk_limit)
        except UpstreamError as e:
            logger.warning(
                f"Could not retrieve knowledge for system prompt: {e.message}",
                extra={"organization_id": organization_id},
            )
            return []

    async def build(self, organization_id: str, user_query: str = "", locale: str | None = None) -> str:
        """Assemble the system prompt for one organization's chat assistant.

        Raises:
            NotFoundError: If an organization directory is configured and the organization is unknown
        """
        organization = await self.memory.get_organization(organization_id, "build_system_prompt")
        language = (locale or self.settings.default_locale).lower()[:2]
        if language not in PROMPT_TEXT:
            language = "es"
        text = PROMPT_TEXT[language]

        segments = await self._knowledge(organization_id, user_query)

        business_name = organization.name if organization and organization.name else None
        if business_name is None:
            business_name = next(
                (
                    str(segment.metadata.attributes["business_name"])
                    for segment in segments
                    if segment.metadata.attributes.get("business_name")
                ),
                FALLBACK_BUSINESS_NAME,
            )
        enabled_tools = organization.enabled_tools if organization else []
        slug = organization.slug if organization else None
        faq_link = f"/{language}/faqs/{slug}" if "faqs" in enabled_tools and slug else None

        sections = [text.intro.format(business_name=business_name), text.response_language]

        knowledge = [text.knowledge_heading]
        if segments:
            knowledge.extend(f"- {segment.text.strip()}" for segment in segments)
        else:
            knowledge.append(text.no_knowledge)
        sections.append("\n".join(knowledge))

        if enabled_tools:
            tools = [text.tools_heading, text.tools_intro, ""]
            tools.extend(
                text.tool_descriptions.get(tool, text.generic_tool.format(tool=tool)) for tool in enabled_tools
            )
            tools.extend(["", text.tools_usage])
            sections.append("\n".join(tools))

        if faq_link:
            sections.append("\n".join([text.faq_heading, *(line.format(faq_link=faq_link) for line in text.faq_lines)]))

        rules = [text.rules_heading, *text.rules[:2]]
        if faq_link:
            rules.append(text.faq_rule.format(faq_link=faq_link))
        rules.extend(text.rules[2:])
        rules.append(text.name_rule.format(business_name=business_name))
        sections.append("\n".join(rules))

        logger.debug(
            f"Built system prompt with {len(segments)} knowledge segment(s)",
            extra={"organization_id": organization_id, "locale": language},
        )
        return "\n\n".join(sections) + "\n"
