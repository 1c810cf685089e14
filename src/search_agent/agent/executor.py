"""Validate-then-invoke execution of registered tools."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

from search_agent.agent.codec import parse_tool_call
from search_agent.agent.lifecycle import CancellationSignal, RequestLifecycleManager
from search_agent.agent.registry import ToolRegistry
from search_agent.obs.tracing import Timer, estimate_result_tokens
from search_agent.types import ToolCall, ToolResult, ToolTrace

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Runs tool calls against a registry.

    Handlers are never invoked for calls that fail validation, and handler
    exceptions are returned as failed `ToolResult`s instead of propagating.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        lifecycle: RequestLifecycleManager | None = None,
    ) -> None:
        self.registry = registry
        self.lifecycle = lifecycle or RequestLifecycleManager()
        self._observer: Callable[[ToolTrace], None] | None = None

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    async def execute(
        self, call: ToolCall, signal: CancellationSignal | None = None
    ) -> ToolResult:
        validation = self.registry.validate_call(call)
        if not validation.valid:
            logger.info("Rejected call to %s: %s", call.name, validation.errors)
            return ToolResult(
                success=False,
                error=f"Validation failed: {'; '.join(validation.errors or [])}",
                token_count=0,
            )

        handler = self.registry.get_handler(call.name)
        if handler is None:
            return ToolResult(
                success=False, error=f"Tool not found: {call.name}", token_count=0
            )

        with Timer() as timer:
            if signal is None:
                with self.lifecycle.track() as handle:
                    result = await self._invoke(call, handler, handle.signal)
            else:
                result = await self._invoke(call, handler, signal)

        if self._observer is not None:
            trace = ToolTrace(
                name=call.name,
                input_payload=dict(call.parameters),
                output_preview=_preview(result),
                latency_ms=timer.elapsed_ms,
                success=result.success,
                token_count=result.token_count,
            )
            try:
                self._observer(trace)
            except Exception:
                logger.exception("Tool observer failed for %s", call.name)
        return result

    async def execute_text(
        self, text: str, signal: CancellationSignal | None = None
    ) -> ToolResult | None:
        """Parse model output and execute the embedded call, if there is one."""
        call = parse_tool_call(text)
        if call is None:
            return None
        return await self.execute(call, signal)

    async def _invoke(
        self, call: ToolCall, handler: Any, signal: CancellationSignal
    ) -> ToolResult:
        try:
            outcome = handler(call.parameters, signal)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return ToolResult(success=False, error=str(exc) or type(exc).__name__, token_count=0)

        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult(
            success=True, data=outcome, token_count=estimate_result_tokens(outcome)
        )


def _preview(result: ToolResult) -> str:
    text = result.error if not result.success else str(result.data)
    return (text or "")[:320]
