"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class ToolCall:
    """A tool invocation extracted from model output."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] | None = None


@dataclass(slots=True)
class ToolResult:
    """Structured outcome re-injected into the reasoning loop."""

    success: bool
    data: Any = None
    error: str | None = None
    token_count: int = 0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True
    token_count: int = 0


@dataclass(slots=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(slots=True)
class LLMResponse:
    content: str
    usage: dict[str, int] | None = None


@dataclass(slots=True)
class WebResult:
    """A single organic web search hit."""

    title: str
    snippet: str
    url: str


@dataclass(slots=True)
class MemoryDocument:
    """A document persisted in the knowledge store."""

    id: str
    content: str
    source_url: str
    title: str
    doc_type: str = "content"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class MemoryResult:
    document: MemoryDocument
    score: float


@dataclass(slots=True)
class Citation:
    """Indexed reference from a synthesized answer to one source."""

    index: int
    source: Literal["web", "memory"]
    url: str
    title: str


@dataclass(slots=True)
class SourceOutcome(Generic[T]):
    """Result of querying one best-effort source.

    A failed source carries an empty result list and the error message, so
    callers can continue with whatever the other sources returned.
    """

    results: list[T] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class SearchSynthesisResult:
    synthesized_answer: str
    web_results: list[WebResult]
    memory_results: list[MemoryResult]
    citations: list[Citation]
    conflict_disclaimer: str | None = None
