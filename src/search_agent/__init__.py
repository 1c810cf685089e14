"""Search agent package."""

from .config import LLMConfig, SearchConfig, SynthesisConfig, ToolHandlerContext

__all__ = ["LLMConfig", "SearchConfig", "SynthesisConfig", "ToolHandlerContext"]
