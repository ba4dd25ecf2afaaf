"""Cypher for memory segments and organizations.

Every segment query is anchored on ``organization_id`` so no statement can
read or write across tenants. ``vector.similarity.cosine`` returns
``(1 + cos) / 2``; queries convert it back to raw cosine.
"""

from typing import LiteralString


class SegmentQueries:
    """All segment queries in one place."""

    @staticmethod
    def schema() -> list[LiteralString]:
        return [
            "CREATE CONSTRAINT memory_segment_id IF NOT EXISTS "
            "FOR (s:MemorySegment) REQUIRE s.id IS UNIQUE",
            "CREATE INDEX memory_segment_organization IF NOT EXISTS "
            "FOR (s:MemorySegment) ON (s.organization_id)",
            "CREATE CONSTRAINT organization_id IF NOT EXISTS "
            "FOR (o:Organization) REQUIRE o.id IS UNIQUE",
        ]

    @staticmethod
    def insert_many() -> LiteralString:
        return """
            UNWIND $segments AS segment
            CREATE (s:MemorySegment)
            SET s = segment
            RETURN count(s) AS created
        """

    @staticmethod
    def similarity_search() -> LiteralString:
        # Exact scan over one tenant; ties resolve to the newer segment
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id})
            WHERE $include_superseded OR s.superseded_by IS NULL
            WITH s, 2 * vector.similarity.cosine(s.embedding, $embedding) - 1 AS score
            WHERE score >= $threshold
            RETURN s, score
            ORDER BY score DESC, s.created_at DESC
            LIMIT $limit
        """

    @staticmethod
    def get_by_id() -> LiteralString:
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id, id: $id})
            RETURN s
        """

    @staticmethod
    def list_recent() -> LiteralString:
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id})
            WHERE $include_superseded OR s.superseded_by IS NULL
            RETURN s
            ORDER BY s.created_at DESC
            LIMIT $limit
        """

    @staticmethod
    def mark_superseded() -> LiteralString:
        # Only an active segment can be superseded
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id, id: $id})
            WHERE s.superseded_by IS NULL
            SET s.superseded_by = $superseded_by, s.superseded_at = $superseded_at
            RETURN s
        """

    @staticmethod
    def delete_by_id() -> LiteralString:
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id, id: $id})
            WITH collect(s) AS nodes
            FOREACH (n IN nodes | DETACH DELETE n)
            RETURN size(nodes) AS deleted
        """

    @staticmethod
    def delete_organization() -> LiteralString:
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id})
            WITH collect(s) AS nodes
            FOREACH (n IN nodes | DETACH DELETE n)
            RETURN size(nodes) AS deleted
        """

    @staticmethod
    def stats() -> LiteralString:
        return """
            MATCH (s:MemorySegment {organization_id: $organization_id})
            RETURN s.kind AS kind,
                   count(s) AS total,
                   sum(CASE WHEN s.superseded_by IS NULL THEN 0 ELSE 1 END) AS superseded,
                   min(s.created_at) AS oldest,
                   max(s.created_at) AS newest
        """


class OrganizationQueries:
    @staticmethod
    def get_by_id() -> LiteralString:
        return """
            MATCH (o:Organization {id: $id})
            RETURN o
        """
