"""FastAPI entrypoint for tool, search, request and trace endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from search_agent.agent.codec import parse_tool_call
from search_agent.agent.lifecycle import RequestCancelledError
from search_agent.agent.session import AgentSession
from search_agent.config import LLMConfig, SearchConfig, ToolHandlerContext
from search_agent.llm.client import LangChainChatClient
from search_agent.memory.store import InMemoryKnowledgeStore
from search_agent.obs.tracing import ToolTraceLog
from search_agent.search.synthesizer import format_citations
from search_agent.search.web import WebSearchClient
from search_agent.types import MemoryDocument, ToolCall

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _load_context() -> ToolHandlerContext:
    llm_config = LLMConfig(
        provider=os.getenv("LLM_PROVIDER", "openai"),
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        api_key=os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENAI_BASE_URL"),
    )
    search_key = os.getenv("SEARCH_API_KEY")
    search_config = (
        SearchConfig(
            provider=os.getenv("SEARCH_PROVIDER", "serpapi"),
            api_key=search_key,
            search_engine_id=os.getenv("SEARCH_ENGINE_ID"),
        )
        if search_key
        else None
    )
    return ToolHandlerContext(llm_config=llm_config, search_config=search_config)


class ToolCallRequest(BaseModel):
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    request_id: str | None = None


class ModelOutputRequest(BaseModel):
    text: str
    request_id: str | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    request_id: str | None = None


class DocumentIn(BaseModel):
    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    source_url: str = ""
    title: str = ""
    doc_type: str = "content"
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentsRequest(BaseModel):
    documents: list[DocumentIn] = Field(min_length=1)


app = FastAPI(title="Search Agent", version="0.1.0")

# Endpoints that read or mutate the session are async so shared state is only
# touched from the event loop thread.

_knowledge_store = InMemoryKnowledgeStore()
_session = AgentSession(
    llm=LangChainChatClient(),
    web_search=WebSearchClient(),
    knowledge_store=_knowledge_store,
    context=_load_context(),
)
_trace_log = ToolTraceLog()
_session.executor.set_observer(_trace_log.record)


@app.get("/health")
async def health() -> dict[str, Any]:
    context = _session.get_context()
    return {
        "status": "ok",
        "llm_configured": bool(context and context.llm_config.api_key),
        "search_configured": bool(context and context.search_config),
        "tools": _session.registry.names(),
        "active_requests": _session.lifecycle.active_count,
    }


@app.get("/tools")
async def list_tools() -> dict[str, Any]:
    return {
        "items": [
            schema.model_dump(exclude_none=True) for schema in _session.registry.list_schemas()
        ],
        "prompt": _session.registry.format_for_prompt(),
    }


@app.post("/tools/parse")
def parse_output(request: ModelOutputRequest) -> dict[str, Any]:
    call = parse_tool_call(request.text)
    return {"tool_call": asdict(call) if call else None}


@app.post("/tools/execute")
async def execute_tool(request: ToolCallRequest) -> dict[str, Any]:
    call = ToolCall(name=request.tool, parameters=request.parameters, reasoning=request.reasoning)
    with _session.lifecycle.track(request.request_id) as handle:
        result = await _session.executor.execute(call, handle.signal)
    return {"request_id": handle.id, **asdict(result)}


@app.post("/agent/step")
async def agent_step(request: ModelOutputRequest) -> dict[str, Any]:
    call = parse_tool_call(request.text)
    if call is None:
        return {"tool_call": None, "result": None}
    with _session.lifecycle.track(request.request_id) as handle:
        result = await _session.executor.execute(call, handle.signal)
    return {"request_id": handle.id, "tool_call": asdict(call), "result": asdict(result)}


@app.post("/search")
async def search(request: SearchRequest) -> dict[str, Any]:
    context = _session.get_context()
    if context is None:
        raise HTTPException(status_code=503, detail="Agent session is not configured")

    with _session.lifecycle.track(request.request_id) as handle:
        try:
            result = await _session.synthesizer.search(
                request.query, context.search_config, context.llm_config, handle.signal
            )
        except RequestCancelledError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Search synthesis failed")
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {
        "request_id": handle.id,
        **asdict(result),
        "formatted_citations": format_citations(result.citations),
    }


@app.get("/requests")
async def active_requests() -> dict[str, Any]:
    return {"items": _session.lifecycle.active_ids()}


@app.delete("/requests/{request_id}")
async def cancel_request(request_id: str) -> dict[str, Any]:
    return {"request_id": request_id, "cancelled": _session.lifecycle.cancel(request_id)}


@app.delete("/requests")
async def cancel_all_requests() -> dict[str, Any]:
    return {"cancelled": _session.lifecycle.cancel_all()}


@app.post("/memory/documents")
async def add_documents(request: DocumentsRequest) -> dict[str, Any]:
    documents = [MemoryDocument(**item.model_dump()) for item in request.documents]
    _knowledge_store.add_documents(documents)
    return {"documents_added": len(documents), "document_count": len(_knowledge_store)}


@app.get("/traces")
async def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [asdict(record) for record in _trace_log.list_recent(limit=limit)]}


@app.get("/metrics")
async def metrics() -> dict[str, Any]:
    return _trace_log.summary()
