import asyncio

import pytest

from search_agent.agent.lifecycle import (
    CancellationController,
    RequestCancelledError,
    RequestLifecycleManager,
)
from search_agent.agent.session import AgentSession
from search_agent.config import LLMConfig, SearchConfig, ToolHandlerContext
from search_agent.search.synthesizer import NO_RESULTS_ANSWER, SearchSynthesizer, format_citations
from search_agent.search.web import SearchTransportError
from search_agent.types import (
    LLMResponse,
    MemoryDocument,
    MemoryResult,
    ToolCall,
    WebResult,
)

LLM_CONFIG = LLMConfig(api_key="test-key", model="gpt-4")
SEARCH_CONFIG = SearchConfig(provider="serpapi", api_key="test-key")

MEMORY_RESULT = MemoryResult(
    document=MemoryDocument(
        id="doc-1",
        content="The quick brown fox jumps over the lazy dog.",
        source_url="https://memory.example.com/fox",
        title="Memory Title",
    ),
    score=0.8,
)
WEB_RESULT = WebResult(
    title="Web Title", snippet="Foxes are agile jumpers.", url="https://web.example.com/fox"
)


class FakeChatClient:
    def __init__(self, answer: str = "Synthesized answer with [1] and [2] citations.") -> None:
        self.answer = answer
        self.calls: list[list] = []

    async def send_messages(self, messages, config, on_token=None, signal=None) -> LLMResponse:
        self.calls.append(messages)
        if on_token is not None:
            on_token(self.answer)
        return LLMResponse(content=self.answer)


class FakeWebSearch:
    def __init__(self, results=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.results = results or []
        self.error = error
        self.delay = delay
        self.queries: list[str] = []

    async def search(self, query, config, signal=None):
        self.queries.append(query)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeKnowledgeStore:
    def __init__(self, results=None, error: Exception | None = None) -> None:
        self.results = results or []
        self.error = error
        self.calls: list[dict] = []

    async def search(self, query, *, limit=5, mode="hybrid", filters=None):
        self.calls.append({"query": query, "limit": limit, "mode": mode, "filters": filters})
        if self.error is not None:
            raise self.error
        return list(self.results)


def _synthesizer(llm=None, web=None, store=None, lifecycle=None) -> SearchSynthesizer:
    return SearchSynthesizer(
        llm=llm or FakeChatClient(),
        web_search=web or FakeWebSearch(),
        knowledge_store=store or FakeKnowledgeStore(),
        lifecycle=lifecycle,
    )


def test_memory_and_web_results_are_cited_memory_first() -> None:
    llm = FakeChatClient()
    store = FakeKnowledgeStore([MEMORY_RESULT])
    # Web finishes first; ordering must still be memory-first.
    synthesizer = _synthesizer(llm, FakeWebSearch([WEB_RESULT]), store)
    tokens: list[str] = []

    result = asyncio.run(
        synthesizer.search(
            "fox jumping over dog", SEARCH_CONFIG, LLM_CONFIG, on_token=tokens.append
        )
    )

    assert len(result.citations) == 2
    assert result.citations[0].source == "memory"
    assert result.citations[0].index == 1
    assert result.citations[1].source == "web"
    formatted = format_citations(result.citations)
    assert "[1] [Knowledge Base]" in formatted
    assert "[2] [Web Source]" in formatted
    assert formatted.splitlines() == [
        "[1] [Knowledge Base] Memory Title — https://memory.example.com/fox",
        "[2] [Web Source] Web Title — https://web.example.com/fox",
    ]
    assert result.synthesized_answer == llm.answer
    assert tokens == [llm.answer]
    assert store.calls == [
        {
            "query": "fox jumping over dog",
            "limit": 5,
            "mode": "hybrid",
            "filters": {"doc_type": "content"},
        }
    ]

    prompt = llm.calls[0][1].content
    assert prompt.index("=== From Your Knowledge Base ===") < prompt.index("=== From Web Search ===")
    assert "[1] Memory Title" in prompt
    assert "[2] Web Title" in prompt


def test_no_results_short_circuits_without_model_call() -> None:
    llm = FakeChatClient()

    result = asyncio.run(_synthesizer(llm).search("nothing", SEARCH_CONFIG, LLM_CONFIG))

    assert "No relevant information found" in result.synthesized_answer
    assert result.synthesized_answer == NO_RESULTS_ANSWER
    assert result.citations == []
    assert llm.calls == []


def test_failing_sources_degrade_to_empty() -> None:
    llm = FakeChatClient()
    synthesizer = _synthesizer(
        llm,
        FakeWebSearch(error=SearchTransportError("SerpApi error: 500")),
        FakeKnowledgeStore([MEMORY_RESULT]),
    )

    result = asyncio.run(synthesizer.search("fox", SEARCH_CONFIG, LLM_CONFIG))

    assert [c.source for c in result.citations] == ["memory"]
    assert result.web_results == []
    assert len(llm.calls) == 1


def test_memory_failure_keeps_web_results() -> None:
    synthesizer = _synthesizer(
        web=FakeWebSearch([WEB_RESULT]),
        store=FakeKnowledgeStore(error=RuntimeError("index corrupted")),
    )

    outcome = asyncio.run(synthesizer.retrieve_memory("fox"))
    result = asyncio.run(synthesizer.search("fox", SEARCH_CONFIG, LLM_CONFIG))

    assert outcome.ok is False
    assert outcome.error == "index corrupted"
    assert [c.source for c in result.citations] == ["web"]
    assert result.citations[0].index == 1


def test_citation_indices_cover_all_sources_in_order() -> None:
    memory = [
        MemoryResult(
            document=MemoryDocument(
                id=f"m{i}", content="c", source_url=f"https://m/{i}", title=f"M{i}"
            ),
            score=0.1 * i,
        )
        for i in range(3)
    ]
    web = [WebResult(title=f"W{i}", snippet="s", url=f"https://w/{i}") for i in range(4)]

    result = asyncio.run(
        _synthesizer(web=FakeWebSearch(web), store=FakeKnowledgeStore(memory)).search(
            "q", SEARCH_CONFIG, LLM_CONFIG
        )
    )
    formatted = format_citations(result.citations)

    assert [c.index for c in result.citations] == list(range(1, 8))
    assert formatted.count("[Knowledge Base]") == 3
    assert formatted.count("[Web Source]") == 4
    assert max(c.index for c in result.citations if c.source == "memory") < min(
        c.index for c in result.citations if c.source == "web"
    )
    assert [c.title for c in result.citations] == ["M0", "M1", "M2", "W0", "W1", "W2", "W3"]


def test_conflict_disclaimer_is_extracted() -> None:
    llm = FakeChatClient("Foxes jump high [1]. However, the web source differs on height [2].")

    result = asyncio.run(
        _synthesizer(llm, FakeWebSearch([WEB_RESULT])).search("fox", SEARCH_CONFIG, LLM_CONFIG)
    )

    assert result.conflict_disclaimer == "However, the web source differs on height [2]."


def test_cancellation_propagates_and_skips_model() -> None:
    llm = FakeChatClient()
    lifecycle = RequestLifecycleManager()
    synthesizer = _synthesizer(llm, FakeWebSearch([WEB_RESULT], delay=0.05), lifecycle=lifecycle)

    async def scenario() -> None:
        handle = lifecycle.create()
        asyncio.get_running_loop().call_later(0.01, lifecycle.cancel, handle.id)
        await synthesizer.search("fox", SEARCH_CONFIG, LLM_CONFIG, handle.signal)

    with pytest.raises(RequestCancelledError):
        asyncio.run(scenario())
    assert llm.calls == []
    assert lifecycle.active_count == 0


def test_search_without_signal_is_tracked_then_released() -> None:
    lifecycle = RequestLifecycleManager()
    observed: list[int] = []

    class ObservingWeb(FakeWebSearch):
        async def search(self, query, config, signal=None):
            observed.append(lifecycle.active_count)
            return [WEB_RESULT]

    asyncio.run(
        _synthesizer(web=ObservingWeb(), lifecycle=lifecycle).search(
            "fox", SEARCH_CONFIG, LLM_CONFIG
        )
    )

    assert observed == [1]
    assert lifecycle.active_count == 0


def test_session_search_tool_end_to_end() -> None:
    session = AgentSession(
        llm=FakeChatClient(),
        web_search=FakeWebSearch([WEB_RESULT]),
        knowledge_store=FakeKnowledgeStore([MEMORY_RESULT]),
        context=ToolHandlerContext(llm_config=LLM_CONFIG, search_config=SEARCH_CONFIG),
    )

    result = asyncio.run(
        session.handle_model_output(
            '<tool_call><name>search_web_for_info</name>'
            '<parameters>{"query": "fox jumping over dog"}</parameters></tool_call>'
        )
    )

    assert result.success is True
    assert result.data["web_results_count"] == 1
    assert result.data["memory_results_count"] == 1
    assert result.data["citations"].startswith("[1] [Knowledge Base] Memory Title")
    assert result.data["memory_results"][0]["content"] == MEMORY_RESULT.document.content
    assert result.token_count > 0
    assert session.lifecycle.active_count == 0


def test_session_search_tool_fails_fast_without_search_config() -> None:
    web = FakeWebSearch([WEB_RESULT])
    session = AgentSession(
        llm=FakeChatClient(),
        web_search=web,
        context=ToolHandlerContext(llm_config=LLM_CONFIG),
    )

    result = asyncio.run(
        session.executor.execute(ToolCall(name="search_web_for_info", parameters={"query": "q"}))
    )

    assert result.success is False
    assert result.error == "Search configuration not available. Please configure search settings."
    assert web.queries == []


def test_session_close_cancels_requests_and_clears_context() -> None:
    session = AgentSession(
        llm=FakeChatClient(),
        web_search=FakeWebSearch(),
        context=ToolHandlerContext(llm_config=LLM_CONFIG),
    )
    handle = session.lifecycle.create()

    session.close()

    assert handle.controller.aborted is True
    assert session.get_context() is None
    result = asyncio.run(
        session.executor.execute(ToolCall(name="search_web_for_info", parameters={"query": "q"}))
    )
    assert "context not initialized" in result.error


def test_session_reregisters_handlers_after_registry_clear() -> None:
    session = AgentSession(llm=FakeChatClient(), web_search=FakeWebSearch())
    session.registry.clear()

    session.ensure_handlers_registered()

    assert session.registry.names() == ["search_web_for_info"]


def test_cancelled_web_branch_cancels_memory_branch() -> None:
    memory_cancelled: list[bool] = []

    class SlowKnowledgeStore(FakeKnowledgeStore):
        async def search(self, query, *, limit=5, mode="hybrid", filters=None):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                memory_cancelled.append(True)
                raise
            return []

    web = FakeWebSearch(error=RequestCancelledError("cancelled"))
    synthesizer = _synthesizer(web=web, store=SlowKnowledgeStore())

    async def scenario() -> None:
        with pytest.raises(RequestCancelledError):
            await synthesizer.search("fox", SEARCH_CONFIG, LLM_CONFIG)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert memory_cancelled == [True]
