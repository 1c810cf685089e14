"""Knowledge store capability and an in-memory hybrid implementation."""

from __future__ import annotations

from dataclasses import dataclass
from hashlib import blake2b
from math import sqrt
from typing import Any, Literal, Protocol

from langchain_core.embeddings import Embeddings

from search_agent.types import MemoryDocument, MemoryResult

SearchMode = Literal["semantic", "keyword", "hybrid"]


class KnowledgeStore(Protocol):
    """Similarity + keyword search over persisted documents."""

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        mode: SearchMode = "hybrid",
        filters: dict[str, Any] | None = None,
    ) -> list[MemoryResult]:
        """Return the most relevant documents, best first."""


class TokenHashEmbeddings(Embeddings):
    """Signed feature hashing over lowercase tokens.

    Offline stand-in for a provider embedding model; any LangChain
    `Embeddings` can be passed to the store instead.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _tokens(text):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            slot = int.from_bytes(digest[:4], "little") % self.dimension
            vector[slot] += -1.0 if digest[4] & 1 else 1.0
        return vector


@dataclass(slots=True)
class _StoredDocument:
    document: MemoryDocument
    embedding: list[float]
    tokens: frozenset[str]


class InMemoryKnowledgeStore:
    """Deterministic knowledge store used for tests and local sessions.

    Documents are indexed on title and content together. Hybrid mode fuses
    the semantic and keyword rankings with reciprocal rank fusion; scores
    are scaled to [0, 1].
    """

    def __init__(self, embeddings: Embeddings | None = None, *, rrf_k: int = 60) -> None:
        self.embeddings = embeddings or TokenHashEmbeddings()
        self.rrf_k = rrf_k
        self._store: dict[str, _StoredDocument] = {}

    def add_documents(self, documents: list[MemoryDocument]) -> None:
        texts = [_indexed_text(doc) for doc in documents]
        vectors = self.embeddings.embed_documents(texts)
        for document, text, vector in zip(documents, texts, vectors, strict=True):
            self._store[document.id] = _StoredDocument(
                document=document, embedding=vector, tokens=frozenset(_tokens(text))
            )

    def remove(self, document_id: str) -> bool:
        return self._store.pop(document_id, None) is not None

    def __len__(self) -> int:
        return len(self._store)

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        mode: SearchMode = "hybrid",
        filters: dict[str, Any] | None = None,
    ) -> list[MemoryResult]:
        candidates = [
            record for record in self._store.values() if _matches(record.document, filters)
        ]
        if mode == "semantic":
            ranked = self._semantic(query, candidates)
        elif mode == "keyword":
            ranked = _keyword(query, candidates)
        elif mode == "hybrid":
            ranked = self._fuse([self._semantic(query, candidates), _keyword(query, candidates)])
        else:
            raise ValueError(f"Unsupported search mode: {mode}")
        return ranked[:limit]

    def _semantic(self, query: str, candidates: list[_StoredDocument]) -> list[MemoryResult]:
        query_embedding = self.embeddings.embed_query(query)
        scored = [
            MemoryResult(
                document=record.document,
                score=_cosine(query_embedding, record.embedding),
            )
            for record in candidates
        ]
        return _ranked(scored)

    def _fuse(self, routes: list[list[MemoryResult]]) -> list[MemoryResult]:
        fused: dict[str, float] = {}
        documents: dict[str, MemoryDocument] = {}
        for results in routes:
            for rank, result in enumerate(results, start=1):
                doc_id = result.document.id
                fused[doc_id] = fused.get(doc_id, 0.0) + 1.0 / (self.rrf_k + rank)
                documents[doc_id] = result.document

        ceiling = len(routes) / (self.rrf_k + 1)
        return _ranked(
            [
                MemoryResult(document=documents[doc_id], score=score / ceiling)
                for doc_id, score in fused.items()
            ]
        )


def _keyword(query: str, candidates: list[_StoredDocument]) -> list[MemoryResult]:
    query_tokens = set(_tokens(query))
    denom = max(1, len(query_tokens))
    scored = []
    for record in candidates:
        scored.append(
            MemoryResult(document=record.document, score=len(query_tokens & record.tokens) / denom)
        )
    return _ranked(scored)


def _ranked(results: list[MemoryResult]) -> list[MemoryResult]:
    # Zero-relevance documents never count as hits.
    return sorted(
        (result for result in results if result.score > 0),
        key=lambda item: item.score,
        reverse=True,
    )


def _matches(document: MemoryDocument, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    for key, value in filters.items():
        if hasattr(document, key):
            actual = getattr(document, key)
        else:
            actual = document.metadata.get(key)
        if actual != value:
            return False
    return True


def _indexed_text(document: MemoryDocument) -> str:
    return f"{document.title} {document.content}"


def _tokens(text: str) -> list[str]:
    return text.lower().split()


def _cosine(a: list[float], b: list[float]) -> float:
    if not a or len(a) != len(b):
        return 0.0
    norm = sqrt(sum(x * x for x in a)) * sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b, strict=True)) / norm
