"""Per-session wiring of registry, executor, lifecycle and handler context."""

from __future__ import annotations

import logging

from search_agent.agent.executor import ToolExecutor
from search_agent.agent.lifecycle import CancellationSignal, RequestLifecycleManager
from search_agent.agent.registry import ToolRegistry
from search_agent.agent.tools import SEARCH_WEB_TOOL, register_builtin_tools
from search_agent.config import SynthesisConfig, ToolHandlerContext
from search_agent.llm.client import ChatClient
from search_agent.memory.store import KnowledgeStore
from search_agent.search.synthesizer import SearchSynthesizer
from search_agent.search.web import WebSearch
from search_agent.types import ToolResult

logger = logging.getLogger(__name__)


class AgentSession:
    """Owns all mutable tool-orchestration state for one agent session.

    The handler context is set at initialization, read by tool handlers on
    every call, and cleared on `close()`. All components share this
    session's `RequestLifecycleManager`.
    """

    def __init__(
        self,
        *,
        llm: ChatClient,
        web_search: WebSearch,
        knowledge_store: KnowledgeStore | None = None,
        context: ToolHandlerContext | None = None,
        synthesis_config: SynthesisConfig | None = None,
    ) -> None:
        self.synthesis_config = synthesis_config or SynthesisConfig()
        self.lifecycle = RequestLifecycleManager()
        self.registry = ToolRegistry()
        self.executor = ToolExecutor(self.registry, self.lifecycle)
        self.synthesizer = SearchSynthesizer(
            llm=llm,
            web_search=web_search,
            knowledge_store=knowledge_store,
            lifecycle=self.lifecycle,
            config=self.synthesis_config,
        )
        self._context = context
        self._handlers_registered = False
        self.ensure_handlers_registered()

    def set_context(self, context: ToolHandlerContext) -> None:
        self._context = context

    def get_context(self) -> ToolHandlerContext | None:
        return self._context

    def clear_context(self) -> None:
        self._context = None

    def ensure_handlers_registered(self) -> None:
        """Register built-in handlers unless they are already present."""
        if self._handlers_registered and SEARCH_WEB_TOOL.name in self.registry:
            return
        register_builtin_tools(
            self.registry,
            self.synthesizer,
            self.get_context,
            memory_preview_chars=self.synthesis_config.memory_preview_chars,
        )
        self._handlers_registered = True

    async def handle_model_output(
        self, text: str, signal: CancellationSignal | None = None
    ) -> ToolResult | None:
        """Execute the tool call embedded in model output, if any."""
        return await self.executor.execute_text(text, signal)

    def close(self) -> None:
        cancelled = self.lifecycle.cancel_all()
        if cancelled:
            logger.info("Cancelled %d in-flight requests on session close", cancelled)
        self.clear_context()
