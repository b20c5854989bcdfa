"""
LLM Package: everything between a resolved provider and the reply.

This package provides:
- budget: token ledger that gates optional prompt sections
- constraints: explicit output-format requirements and their validation
- PromptContextBuilder: persona, enrichment, history → message list
- ToolLoopExecutor: bounded multi-step tool-calling conversation
- ResponseStreamer: one stream per turn, normalized final reply
"""

from nova.llm.context_builder import PromptBuildResult, PromptContextBuilder
from nova.llm.loop import ToolLoopExecutor
from nova.llm.streamer import NormalizedReply, ResponseStreamer, normalize_reply

__all__ = [
    "PromptBuildResult",
    "PromptContextBuilder",
    "ToolLoopExecutor",
    "ResponseStreamer",
    "NormalizedReply",
    "normalize_reply",
]
