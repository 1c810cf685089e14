import asyncio

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from search_agent.agent.lifecycle import CancellationController, RequestCancelledError
from search_agent.config import LLMConfig
from search_agent.llm.client import LangChainChatClient, create_chat_model
from search_agent.types import ChatMessage

MESSAGES = [
    ChatMessage(role="system", content="Be brief."),
    ChatMessage(role="user", content="Say hi."),
]


def test_streaming_forwards_every_token() -> None:
    client = LangChainChatClient(FakeListChatModel(responses=["Hello [1]."]))
    tokens: list[str] = []

    response = asyncio.run(client.send_messages(MESSAGES, LLMConfig(), tokens.append))

    assert response.content == "Hello [1]."
    assert "".join(tokens) == "Hello [1]."
    assert len(tokens) > 1


def test_batch_mode_returns_full_content() -> None:
    client = LangChainChatClient(FakeListChatModel(responses=["batch answer"]))
    tokens: list[str] = []

    response = asyncio.run(
        client.send_messages(MESSAGES, LLMConfig(stream=False), tokens.append)
    )

    assert response.content == "batch answer"
    assert tokens == ["batch answer"]


def test_no_op_token_callback_is_supported() -> None:
    client = LangChainChatClient(FakeListChatModel(responses=["ok"]))

    response = asyncio.run(client.send_messages(MESSAGES, LLMConfig(), None))

    assert response.content == "ok"


def test_aborted_signal_cancels_model_call() -> None:
    controller = CancellationController()
    controller.abort()
    client = LangChainChatClient(FakeListChatModel(responses=["never"]))

    with pytest.raises(RequestCancelledError):
        asyncio.run(client.send_messages(MESSAGES, LLMConfig(), None, controller.signal))


def test_model_factory_is_cached_per_config() -> None:
    built: list[LLMConfig] = []

    def factory(config: LLMConfig) -> BaseChatModel:
        built.append(config)
        return FakeListChatModel(responses=["a", "b"])

    client = LangChainChatClient(model_factory=factory)
    config = LLMConfig(model="m1", stream=False)
    asyncio.run(client.send_messages(MESSAGES, config))
    asyncio.run(client.send_messages(MESSAGES, config))

    assert built == [config]


def test_create_chat_model_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        create_chat_model(LLMConfig(provider="carrier-pigeon"))


def test_create_chat_model_builds_openai_model() -> None:
    model = create_chat_model(LLMConfig(api_key="sk-test", model="gpt-4o-mini"))

    assert isinstance(model, BaseChatModel)
