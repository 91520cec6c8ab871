"""Common test fixtures for notegraph."""
import datetime
from typing import List, Optional

import pytest

from notegraph.config import NotegraphConfig
from notegraph.models.schema import Note, NoteMetadata
from notegraph.services.context_service import ContextService
from notegraph.services.edge_service import EdgeService
from notegraph.services.embedding_service import EmbeddingService
from notegraph.services.import_service import ImportService
from notegraph.services.linking_service import LinkingService
from notegraph.services.note_service import NoteService
from notegraph.services.scoring import ScoringEngine
from notegraph.services.search_service import SearchService
from notegraph.services.text_analysis import tokenize
from notegraph.storage.record_store import RecordStore
from tests.fakes import FakeEmbeddingProvider, RecordingPublisher


@pytest.fixture
def settings():
    """Default thresholds and weights, independent of the environment."""
    return NotegraphConfig(
        in_memory_db=True,
        auto_accept_threshold=0.5,
        suggestion_threshold=0.25,
        token_weight=0.25,
        embedding_weight=0.55,
        tag_weight=0.15,
        title_weight=0.05,
        embedding_exponent=1.25,
        no_overlap_penalty=0.9,
        embedding_provider="none",
        embed_concurrency=3,
        context_budget_tokens=8000,
        context_max_external_per_seed=3,
        semantic_seed_limit=30,
        seed_tag_min_frequency=3,
    )


@pytest.fixture
def store():
    """A fresh in-memory record store."""
    store = RecordStore(in_memory=True)
    yield store
    store.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def fake_embedder():
    """An 8-dimensional FakeEmbeddingProvider."""
    return FakeEmbeddingProvider(dim=8)


@pytest.fixture
def embeddings(fake_embedder):
    return EmbeddingService(fake_embedder, max_concurrency=3)


@pytest.fixture
def scoring(settings):
    return ScoringEngine(settings)


@pytest.fixture
def edge_service(store, scoring, publisher):
    return EdgeService(store, scoring=scoring, publisher=publisher)


@pytest.fixture
def linking_service(store, edge_service):
    return LinkingService(store, edge_service)


@pytest.fixture
def note_service(store, linking_service, embeddings, publisher):
    return NoteService(store, linking_service, embeddings=embeddings, publisher=publisher)


@pytest.fixture
def import_service(store, edge_service, linking_service, embeddings, publisher):
    return ImportService(
        store, edge_service, linking_service, embeddings=embeddings, publisher=publisher
    )


@pytest.fixture
def search_service(store, embeddings):
    return SearchService(store, embeddings)


@pytest.fixture
def context_service(store, search_service, settings):
    return ContextService(store, search_service, settings)


@pytest.fixture
def add_note(store):
    """Insert a note directly into the store, bypassing auto-linking."""

    def _add(
        title: str,
        body: str = "",
        tags: Optional[List[str]] = None,
        embedding: Optional[List[float]] = None,
        updated_at: Optional[datetime.datetime] = None,
        **fields,
    ) -> Note:
        body = body or f"Notes about {title.lower()}."
        note = Note(
            title=title,
            body=body,
            tags=tags or [],
            token_counts=tokenize(f"{title}\n{body}"),
            embedding=embedding,
            metadata=fields.pop("metadata", NoteMetadata()),
            **fields,
        )
        if updated_at is not None:
            note = note.model_copy(update={"created_at": updated_at, "updated_at": updated_at})
        return store.notes.create(note)

    return _add
