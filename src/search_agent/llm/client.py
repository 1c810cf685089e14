"""Chat model capability used by the synthesizer."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from search_agent.agent.lifecycle import CancellationSignal, run_cancellable
from search_agent.config import LLMConfig
from search_agent.types import ChatMessage, LLMResponse

TokenCallback = Callable[[str], None]

_OPENAI_COMPATIBLE = {"openai", "deepseek", "glm", "ollama"}


class ChatClient(Protocol):
    """Send structured messages, stream tokens, cancel via signal."""

    async def send_messages(
        self,
        messages: list[ChatMessage],
        config: LLMConfig,
        on_token: TokenCallback | None = None,
        signal: CancellationSignal | None = None,
    ) -> LLMResponse:
        """Return the full completion for `messages`."""


def create_chat_model(config: LLMConfig) -> BaseChatModel:
    """Build a LangChain chat model for an OpenAI-compatible provider."""
    if config.provider not in _OPENAI_COMPATIBLE:
        raise ValueError(f"Unsupported LLM provider: {config.provider}")

    from langchain_openai import ChatOpenAI

    kwargs: dict[str, Any] = {
        "model": config.model,
        "temperature": config.temperature,
    }
    if config.api_key:
        kwargs["api_key"] = config.api_key
    if config.base_url:
        kwargs["base_url"] = config.base_url
    if config.max_tokens:
        kwargs["max_tokens"] = config.max_tokens
    return ChatOpenAI(**kwargs)


class LangChainChatClient:
    """`ChatClient` backed by a LangChain chat model.

    A fixed `model` is used as-is (handy for tests); otherwise one is built
    per distinct config through `model_factory`.
    """

    def __init__(
        self,
        model: BaseChatModel | None = None,
        *,
        model_factory: Callable[[LLMConfig], BaseChatModel] = create_chat_model,
    ) -> None:
        self._model = model
        self._model_factory = model_factory
        self._cache: dict[str, BaseChatModel] = {}

    async def send_messages(
        self,
        messages: list[ChatMessage],
        config: LLMConfig,
        on_token: TokenCallback | None = None,
        signal: CancellationSignal | None = None,
    ) -> LLMResponse:
        model = self._resolve_model(config)
        lc_messages = [_to_langchain_message(message) for message in messages]
        if config.stream:
            return await run_cancellable(self._stream(model, lc_messages, on_token), signal)
        return await run_cancellable(self._invoke(model, lc_messages, on_token), signal)

    def _resolve_model(self, config: LLMConfig) -> BaseChatModel:
        if self._model is not None:
            return self._model
        key = config.model_dump_json()
        if key not in self._cache:
            self._cache[key] = self._model_factory(config)
        return self._cache[key]

    async def _stream(
        self,
        model: BaseChatModel,
        messages: list[BaseMessage],
        on_token: TokenCallback | None,
    ) -> LLMResponse:
        parts: list[str] = []
        usage: dict[str, int] | None = None
        async for chunk in model.astream(messages):
            text = _content_text(chunk.content)
            if text:
                parts.append(text)
                if on_token is not None:
                    on_token(text)
            chunk_usage = getattr(chunk, "usage_metadata", None)
            if chunk_usage:
                usage = dict(chunk_usage)
        return LLMResponse(content="".join(parts), usage=usage)

    async def _invoke(
        self,
        model: BaseChatModel,
        messages: list[BaseMessage],
        on_token: TokenCallback | None,
    ) -> LLMResponse:
        response = await model.ainvoke(messages)
        text = _content_text(response.content)
        if on_token is not None and text:
            on_token(text)
        usage = getattr(response, "usage_metadata", None)
        return LLMResponse(content=text, usage=dict(usage) if usage else None)


def _to_langchain_message(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)
