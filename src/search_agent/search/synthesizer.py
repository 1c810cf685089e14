"""Memory + web retrieval fused into one cited, model-written answer."""

from __future__ import annotations

import asyncio
import logging
import re

from search_agent.agent.lifecycle import (
    CancellationSignal,
    RequestCancelledError,
    RequestLifecycleManager,
)
from search_agent.config import LLMConfig, SearchConfig, SynthesisConfig
from search_agent.llm.client import ChatClient, TokenCallback
from search_agent.memory.store import KnowledgeStore
from search_agent.search.web import WebSearch
from search_agent.types import (
    ChatMessage,
    Citation,
    MemoryResult,
    SearchSynthesisResult,
    SourceOutcome,
    WebResult,
)

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "No relevant information found from your knowledge base or web search."

SOURCE_LABELS = {"memory": "[Knowledge Base]", "web": "[Web Source]"}

SYNTHESIS_SYSTEM_PROMPT = """
You are a helpful assistant that synthesizes information from multiple sources.
You will be given a user query, results from the user's knowledge base (previously read content), and web search results.

Your task:
1. Synthesize a comprehensive answer using both sources
2. Cite sources using [N] notation where N is the source number
3. If you notice any conflicts between sources, mention them briefly
4. Prioritize accuracy and cite specific sources for claims

Format your response as:
- A clear, well-structured answer with inline citations [N]
- If conflicts exist, add a brief note about the discrepancy
""".strip()

_CONFLICT_PATTERNS = (
    re.compile(
        r"(?:however|note|importantly|discrepancy|conflict|differs?|contradict)[^.]*\.",
        flags=re.IGNORECASE,
    ),
    re.compile(r"(?:the sources? (?:disagree|differ|conflict))[^.]*\.", flags=re.IGNORECASE),
)


class SearchSynthesizer:
    """Answers a query from the knowledge store and the web in one pass.

    Both sources are queried concurrently and either may fail without
    failing the whole search. Citations always list knowledge-base sources
    before web sources, regardless of relevance scores or arrival order.
    """

    def __init__(
        self,
        *,
        llm: ChatClient,
        web_search: WebSearch,
        knowledge_store: KnowledgeStore | None = None,
        lifecycle: RequestLifecycleManager | None = None,
        config: SynthesisConfig | None = None,
    ) -> None:
        self.llm = llm
        self.web_search = web_search
        self.knowledge_store = knowledge_store
        self.lifecycle = lifecycle or RequestLifecycleManager()
        self.config = config or SynthesisConfig()

    async def search(
        self,
        query: str,
        search_config: SearchConfig | None,
        llm_config: LLMConfig,
        signal: CancellationSignal | None = None,
        *,
        on_token: TokenCallback | None = None,
    ) -> SearchSynthesisResult:
        """Run retrieval and synthesis for `query`.

        Without a caller-supplied signal the search is tracked as its own
        request on the lifecycle manager for its whole duration.

        Raises:
            RequestCancelledError: the signal fired before synthesis finished.
        """

        if signal is None:
            with self.lifecycle.track() as handle:
                return await self._search(query, search_config, llm_config, handle.signal, on_token)
        return await self._search(query, search_config, llm_config, signal, on_token)

    async def _search(
        self,
        query: str,
        search_config: SearchConfig | None,
        llm_config: LLMConfig,
        signal: CancellationSignal,
        on_token: TokenCallback | None,
    ) -> SearchSynthesisResult:
        branches = (
            asyncio.ensure_future(self.retrieve_memory(query)),
            asyncio.ensure_future(self.search_web(query, search_config, signal)),
        )
        try:
            memory, web = await asyncio.gather(*branches)
        except BaseException:
            for branch in branches:
                branch.cancel()
            raise
        signal.raise_if_aborted()

        citations = build_citations(memory.results, web.results)
        if not citations:
            return SearchSynthesisResult(
                synthesized_answer=NO_RESULTS_ANSWER,
                web_results=[],
                memory_results=[],
                citations=[],
            )

        messages = [
            ChatMessage(role="system", content=SYNTHESIS_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=build_synthesis_context(query, memory.results, web.results, citations),
            ),
        ]
        streamed: list[str] = []

        def _collect(token: str) -> None:
            streamed.append(token)
            if on_token is not None:
                on_token(token)

        response = await self.llm.send_messages(messages, llm_config, _collect, signal)
        answer = response.content or "".join(streamed)

        return SearchSynthesisResult(
            synthesized_answer=answer,
            web_results=web.results,
            memory_results=memory.results,
            citations=citations,
            conflict_disclaimer=extract_conflict_disclaimer(answer),
        )

    async def retrieve_memory(self, query: str) -> SourceOutcome[MemoryResult]:
        """Query the knowledge store; failures degrade to an empty outcome."""
        if self.knowledge_store is None:
            return SourceOutcome()
        try:
            results = await self.knowledge_store.search(
                query,
                limit=self.config.memory_limit,
                mode=self.config.memory_mode,
                filters={"doc_type": self.config.memory_doc_type},
            )
        except RequestCancelledError:
            raise
        except Exception as exc:
            logger.warning("Failed to retrieve memory: %s", exc)
            return SourceOutcome(error=str(exc) or type(exc).__name__)
        return SourceOutcome(results=list(results))

    async def search_web(
        self,
        query: str,
        search_config: SearchConfig | None,
        signal: CancellationSignal | None = None,
    ) -> SourceOutcome[WebResult]:
        """Query the web; failures other than cancellation degrade to empty."""
        try:
            results = await self.web_search.search(query, search_config, signal)
        except RequestCancelledError:
            raise
        except Exception as exc:
            logger.warning("Web search failed: %s", exc)
            return SourceOutcome(error=str(exc) or type(exc).__name__)
        return SourceOutcome(results=list(results))


def build_citations(
    memory_results: list[MemoryResult], web_results: list[WebResult]
) -> list[Citation]:
    citations: list[Citation] = []
    for result in memory_results:
        citations.append(
            Citation(
                index=len(citations) + 1,
                source="memory",
                url=result.document.source_url,
                title=result.document.title,
            )
        )
    for result in web_results:
        citations.append(
            Citation(index=len(citations) + 1, source="web", url=result.url, title=result.title)
        )
    return citations


def build_synthesis_context(
    query: str,
    memory_results: list[MemoryResult],
    web_results: list[WebResult],
    citations: list[Citation],
) -> str:
    """Lay out the query and numbered excerpts in citation order."""
    parts = [f"User Query: {query}\n"]
    memory_citations = citations[: len(memory_results)]
    web_citations = citations[len(memory_results) :]

    if memory_results:
        parts.append("=== From Your Knowledge Base ===")
        for result, citation in zip(memory_results, memory_citations, strict=True):
            parts.extend(
                [
                    f"[{citation.index}] {result.document.title}",
                    f"Source: {result.document.source_url}",
                    f"Content: {result.document.content}",
                    "",
                ]
            )

    if web_results:
        parts.append("=== From Web Search ===")
        for result, citation in zip(web_results, web_citations, strict=True):
            parts.extend(
                [
                    f"[{citation.index}] {result.title}",
                    f"Source: {result.url}",
                    f"Content: {result.snippet}",
                    "",
                ]
            )

    return "\n".join(parts)


def extract_conflict_disclaimer(answer: str) -> str | None:
    for pattern in _CONFLICT_PATTERNS:
        match = pattern.search(answer)
        if match:
            return match.group(0)
    return None


def format_citations(citations: list[Citation]) -> str:
    return "\n".join(
        f"[{citation.index}] {SOURCE_LABELS[citation.source]} {citation.title} — {citation.url}"
        for citation in citations
    )
