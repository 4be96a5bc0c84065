"""LLM integration module.

Provides a thin wrapper around the Anthropic API with cost estimates, used
by the LLM merge oracle.
"""

from agentsync.llm.client import LLMClient, LLMResponse

__all__ = [
    "LLMClient",
    "LLMResponse",
]
