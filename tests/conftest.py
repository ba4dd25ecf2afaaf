"""
Pytest configuration and shared fixtures.
"""

import math

import pytest
from fastapi.testclient import TestClient

from chayo_memory.core.config import Settings
from chayo_memory.core.errors import EmbeddingError
from chayo_memory.domain.models import EmbeddingRequest, EmbeddingType, Organization
from chayo_memory.infrastructure.repositories.in_memory import InMemorySegmentStore
from chayo_memory.infrastructure.repositories.organizations import InMemoryOrganizationDirectory
from chayo_memory.main import create_app
from chayo_memory.services.memory_service import ConversationMemoryService
from chayo_memory.services.prompt_builder import ClientSystemPromptBuilder

DIMENSIONS = 8

# Each topic owns one axis; the last axis is a small shared bias
TOPIC_KEYWORDS = {
    0: ("hours", "horario", "open", "schedule"),
    1: ("price", "prices", "cost", "pesos"),
    2: ("location", "address", "located", "street"),
    3: ("appointment", "appointments", "booking", "cita"),
    4: ("delivery", "shipping"),
    5: ("payment", "card", "cash"),
    6: ("parking",),
}
BIAS = 0.1


class KeywordEmbedder:
    """Deterministic embedder: one axis per topic keyword found in the text.

    Texts about the same topic score 1.0 against each other; texts about
    different topics score close to 0.
    """

    def __init__(self, dimensions: int = DIMENSIONS, fail_on_call: int | None = None):
        self._dimensions = dimensions
        self.fail_on_call = fail_on_call
        self.calls: list[list[EmbeddingRequest]] = []
        self.overrides: dict[str, list[float]] = {}

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> list[float]:
        if text in self.overrides:
            return self.overrides[text]
        lowered = text.lower()
        vector = [0.0] * self._dimensions
        for axis, keywords in TOPIC_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                vector[axis] = 1.0
        vector[-1] = BIAS
        return vector

    async def generate_embeddings(self, items: list[EmbeddingRequest]) -> list[list[float]]:
        self.calls.append(list(items))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise EmbeddingError("Embedding provider failed", details={"source": "fake", "operation": "embed"})
        return [self.vector(item.text) for item in items]

    async def embed_query(self, text: str) -> list[float]:
        [vector] = await self.generate_embeddings([EmbeddingRequest(text=text, type=EmbeddingType.QUERY)])
        return vector


def unit(*components: float) -> list[float]:
    """Pad ``components`` to the test dimension and normalise."""
    vector = list(components) + [0.0] * (DIMENSIONS - len(components))
    norm = math.sqrt(sum(c * c for c in vector))
    return [c / norm for c in vector]


def make_settings(**overrides) -> Settings:
    values = {
        "voyage_api_key": "test-key",
        "vector_store_backend": "memory",
        "instrument_fastapi": False,
        "max_chunk_tokens": 400,
        "embedding_batch_size": 64,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def store():
    return InMemorySegmentStore(dimensions=DIMENSIONS)


@pytest.fixture
def memory_service(embedder, store, settings):
    return ConversationMemoryService(embeddings=embedder, store=store, settings=settings)


@pytest.fixture
def organizations():
    return InMemoryOrganizationDirectory(
        [
            Organization(
                id="org1",
                name="Clínica Sonrisas",
                slug="clinica-sonrisas",
                enabled_tools=["appointments", "faqs"],
            ),
            Organization(id="org2", name="Taquería El Sol", slug=None, enabled_tools=[]),
        ]
    )


@pytest.fixture
def directory_service(embedder, store, settings, organizations):
    """Memory service that requires organizations to exist."""
    return ConversationMemoryService(embeddings=embedder, store=store, settings=settings, organizations=organizations)


@pytest.fixture
def prompt_builder(directory_service, settings):
    return ClientSystemPromptBuilder(directory_service, settings)


@pytest.fixture
def client(directory_service, settings):
    app = create_app(settings, memory_service=directory_service)
    with TestClient(app) as test_client:
        yield test_client
