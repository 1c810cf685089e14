"""Configuration models for the search agent."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Configures the chat model used for synthesis."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    stream: bool = True


class SearchConfig(BaseModel):
    """Configures the web search provider."""

    provider: Literal["serpapi", "google"] = "serpapi"
    api_key: str = ""
    search_engine_id: str | None = None
    num_results: int = Field(default=5, ge=1, le=10)
    timeout_seconds: float = Field(default=15.0, gt=0.0)


class SynthesisConfig(BaseModel):
    """Configures memory retrieval and prompt construction for synthesis."""

    memory_limit: int = Field(default=5, ge=1)
    memory_mode: Literal["semantic", "keyword", "hybrid"] = "hybrid"
    memory_doc_type: str = "content"
    memory_preview_chars: int = Field(default=200, ge=1)


class ToolHandlerContext(BaseModel):
    """Configuration handed to tool handlers for one agent session."""

    llm_config: LLMConfig
    search_config: SearchConfig | None = None
