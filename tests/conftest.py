"""Shared pytest fixtures for the memory engine tests.

Provides in-process fakes for the embedding model, the OpenSearch index and the
Bedrock runtime so tests never touch the network, plus SQLite-backed stores in
``tmp_path``.
"""

import math
import os
import tempfile
import zlib
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

# ---------------------------------------------------------------------------
# Environment overrides (must be set BEFORE package import)
# ---------------------------------------------------------------------------

os.environ.setdefault('LOG_LEVEL', 'WARNING')
os.environ.setdefault('MACRODATA_ROOT', os.path.join(tempfile.gettempdir(), 'macrodata-tests'))
os.environ.setdefault('OPENSEARCH_INDEX_SYNC_WAIT', '0')

from macrodata.services.database import MemoryDatabase  # noqa: E402
from macrodata.services.entity_store import EntityStore  # noqa: E402
from macrodata.services.memory_tools import MemoryTools  # noqa: E402
from macrodata.services.owner_runtime import OwnerRegistry  # noqa: E402
from macrodata.services.vector_mirror import VectorMirror  # noqa: E402
from macrodata.utils.bedrock_embed import BedrockEmbedError  # noqa: E402
from macrodata.utils.config import StoreConfig, config  # noqa: E402
from macrodata.utils.opensearch_client import OpenSearchError, document_key  # noqa: E402

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeEmbed:
    """Deterministic bag-of-words embeddings."""

    def __init__(self, dimension: int = 32):
        self.dimension = dimension
        self.calls = 0
        self.fail = False

    def _vector(self, text: str) -> List[float]:
        if self.fail:
            raise BedrockEmbedError('embedding service unavailable')
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            vector[zlib.crc32(token.encode('utf-8')) % self.dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]

    def embed_document(self, text: str) -> List[float]:
        self.calls += 1
        return self._vector(text)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        return [self._vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        self.calls += 1
        return self._vector(text)

    def health_check(self) -> bool:
        return not self.fail


def _cosine(a: List[float], b: List[float]) -> float:
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if not norm_a or not norm_b:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)


class FakeOpenSearch:
    """In-memory k-NN index keyed by index type and document id."""

    def __init__(self):
        self.indices: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail = False

    def create_index_if_not_exists(self, index_type: str = 'memory') -> str:
        if index_type in self.indices:
            return 'exists'
        self.indices[index_type] = {}
        return 'created'

    def upsert_document(self, doc_id: str, document: Dict[str, Any], index_type: str = 'memory') -> bool:
        if self.fail:
            raise OpenSearchError('index unavailable')
        self.indices.setdefault(index_type, {})[document_key(document.get('owner_id'), doc_id)] = dict(document)
        return True

    def bulk_upsert(self, documents, index_type: str = 'conversation') -> int:
        if self.fail:
            raise OpenSearchError('index unavailable')
        count = 0
        for document in documents:
            key = document_key(document.get('owner_id'), document['id'])
            self.indices.setdefault(index_type, {})[key] = dict(document)
            count += 1
        return count

    def vector_search(self,
                      query_vector: List[float],
                      owner_id: str,
                      top_k: int = 20,
                      index_type: str = 'memory',
                      filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        if self.fail:
            raise OpenSearchError('index unavailable')
        hits = []
        for document in self.indices.get(index_type, {}).values():
            if document.get('owner_id') != owner_id:
                continue
            if any(document.get(field) != value for field, value in (filters or {}).items()):
                continue
            source = {k: v for k, v in document.items() if k != 'embedding'}
            score = _cosine(query_vector, document['embedding'])
            hits.append({'id': document['id'], 'score': score, 'document': source})
        hits.sort(key=lambda hit: hit['score'], reverse=True)
        return hits[:top_k]

    def count_documents(self, owner_id: str, index_type: str = 'conversation') -> int:
        return sum(1 for doc in self.indices.get(index_type, {}).values() if doc.get('owner_id') == owner_id)

    def health_check(self) -> bool:
        return not self.fail

    def documents(self, index_type: str, owner_id: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Stored documents by entity id, optionally for one owner."""
        return {
            document['id']: document
            for document in self.indices.get(index_type, {}).values()
            if owner_id is None or document.get('owner_id') == owner_id
        }


def text_response(text: str) -> Dict[str, Any]:
    return {'message': {'role': 'assistant', 'content': [{'text': text}]}, 'stop_reason': 'end_turn', 'usage': {}}


def tool_use_response(name: str, arguments: Dict[str, Any], tool_use_id: str = 'tool-1', text: str = ''):
    content = [{'text': text}] if text else []
    content.append({'toolUse': {'toolUseId': tool_use_id, 'name': name, 'input': arguments}})
    return {'message': {'role': 'assistant', 'content': content}, 'stop_reason': 'tool_use', 'usage': {}}


class FakeLLM:
    """Plays back scripted Converse responses; an Exception entry is raised instead."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def converse(self, messages, system_prompt, model_tier='fast', tool_specs=None, max_tokens=None, temperature=None):
        self.calls.append({
            'messages': [dict(m) for m in messages],
            'system_prompt': system_prompt,
            'model_tier': model_tier,
            'tool_specs': tool_specs,
        })
        if not self.responses:
            return text_response('Done.')
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def health_check(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_embed() -> FakeEmbed:
    return FakeEmbed()


@pytest.fixture
def fake_opensearch() -> FakeOpenSearch:
    return FakeOpenSearch()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def database(tmp_path) -> MemoryDatabase:
    db = MemoryDatabase(f"sqlite:///{tmp_path / 'memory.db'}")
    yield db
    db.dispose()


@pytest.fixture
def store(database) -> EntityStore:
    return EntityStore(database)


@pytest.fixture
def mirror(fake_embed, fake_opensearch) -> VectorMirror:
    return VectorMirror('owner-1', embed=fake_embed, opensearch=fake_opensearch)


@pytest.fixture
def app_config(tmp_path):
    return replace(config,
                   store=StoreConfig(data_dir=str(tmp_path / 'data'), database_url=None),
                   conversations=replace(config.conversations, projects_dir=str(tmp_path / 'projects')))


@pytest.fixture
def registry(app_config, fake_embed, fake_opensearch, fake_llm) -> OwnerRegistry:
    reg = OwnerRegistry(app_config=app_config, embed=fake_embed, opensearch=fake_opensearch, llm=fake_llm)
    yield reg
    reg.shutdown()


@pytest.fixture
def tools(registry) -> MemoryTools:
    return MemoryTools(registry)
