"""Organization directory implementations."""

from neo4j import AsyncDriver, AsyncSession

from chayo_memory.core.decorators import with_session
from chayo_memory.domain.models import Organization
from chayo_memory.infrastructure.neo4j.driver import translate_neo4j_errors
from chayo_memory.infrastructure.neo4j.queries import OrganizationQueries


class InMemoryOrganizationDirectory:
    def __init__(self, organizations: list[Organization] | None = None):
        self._organizations = {organization.id: organization for organization in organizations or []}

    async def get_organization(self, organization_id: str) -> Organization | None:
        return self._organizations.get(organization_id)


class Neo4jOrganizationDirectory:
    """Reads ``(:Organization {id, name, slug, enabled_tools})`` nodes."""

    def __init__(self, driver: AsyncDriver):
        self.driver = driver

    @with_session()
    async def get_organization(self, session: AsyncSession, organization_id: str) -> Organization | None:
        async with translate_neo4j_errors("get_organization", organization_id, "read"):
            result = await session.run(OrganizationQueries.get_by_id(), id=organization_id)
            record = await result.single()
        if record is None:
            return None

        node = dict(record["o"])
        return Organization(
            id=node["id"],
            name=node.get("name") or node["id"],
            slug=node.get("slug"),
            enabled_tools=list(node.get("enabled_tools") or []),
        )

