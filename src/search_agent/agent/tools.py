"""Built-in tool schemas and handlers for the search agent."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from search_agent.agent.lifecycle import CancellationSignal
from search_agent.agent.registry import ToolHandler, ToolRegistry
from search_agent.agent.schema import ToolSchema
from search_agent.config import ToolHandlerContext
from search_agent.obs.tracing import estimate_result_tokens
from search_agent.search.synthesizer import SearchSynthesizer, format_citations
from search_agent.types import SearchSynthesisResult, ToolResult

logger = logging.getLogger(__name__)

SEARCH_WEB_TOOL = ToolSchema.model_validate(
    {
        "name": "search_web_for_info",
        "description": (
            "Searches the web for additional information about a topic or query.\n"
            "Use this tool when you need external information to answer a question "
            "or provide context.\n"
            "Returns relevant search results with titles, snippets, and source URLs."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to find relevant information",
                },
                "context": {
                    "type": "string",
                    "description": "Optional context about why this search is being performed",
                },
            },
            "required": ["query"],
        },
        "examples": [
            {
                "input": {
                    "query": "quantum entanglement explanation simple",
                    "context": "User wants to understand a physics concept",
                },
                "description": "Search for explanatory content about a concept",
            },
            {
                "input": {"query": "React useEffect cleanup function"},
                "description": "Search for technical documentation",
            },
        ],
    }
)

ContextProvider = Callable[[], ToolHandlerContext | None]


def make_search_handler(
    synthesizer: SearchSynthesizer,
    context_provider: ContextProvider,
    *,
    memory_preview_chars: int = 200,
) -> ToolHandler:
    """Build the `search_web_for_info` handler bound to a session context."""

    async def _search(
        params: dict[str, Any], signal: CancellationSignal | None = None
    ) -> ToolResult:
        query = params.get("query")
        if not query or not isinstance(query, str):
            return ToolResult(
                success=False, error="Missing required parameter: query", token_count=0
            )

        context = context_provider()
        if context is None:
            return ToolResult(
                success=False,
                error="Tool handler context not initialized. LLM configuration required.",
                token_count=0,
            )
        if context.search_config is None:
            return ToolResult(
                success=False,
                error="Search configuration not available. Please configure search settings.",
                token_count=0,
            )

        result = await synthesizer.search(
            query, context.search_config, context.llm_config, signal
        )
        data = search_response_payload(result, memory_preview_chars=memory_preview_chars)
        return ToolResult(success=True, data=data, token_count=estimate_result_tokens(data))

    return _search


def search_response_payload(
    result: SearchSynthesisResult, *, memory_preview_chars: int = 200
) -> dict[str, Any]:
    """Shape a synthesis result for re-injection into the model context."""
    return {
        "synthesized_answer": result.synthesized_answer,
        "web_results_count": len(result.web_results),
        "memory_results_count": len(result.memory_results),
        "citations": format_citations(result.citations),
        "conflict_disclaimer": result.conflict_disclaimer,
        "web_results": [
            {"title": item.title, "snippet": item.snippet, "url": item.url}
            for item in result.web_results
        ],
        "memory_results": [
            {
                "title": item.document.title,
                "content": _truncate(item.document.content, memory_preview_chars),
                "source_url": item.document.source_url,
                "score": item.score,
            }
            for item in result.memory_results
        ],
    }


def register_builtin_tools(
    registry: ToolRegistry,
    synthesizer: SearchSynthesizer,
    context_provider: ContextProvider,
    *,
    memory_preview_chars: int = 200,
) -> None:
    """Register the default tool set.

    Tools:
    - `search_web_for_info`: knowledge base + web search with cited synthesis.
    """

    registry.register(
        SEARCH_WEB_TOOL,
        make_search_handler(
            synthesizer, context_provider, memory_preview_chars=memory_preview_chars
        ),
    )
    logger.debug("Registered built-in tools: %s", registry.names())


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
