"""LLM merge oracle — file merges through the Anthropic Messages API.

The model is asked to position canonical text and reconcile imports, never
to rewrite it. Its answer is only parsed here; whether it is *right* is
decided later by the sandbox validator.
"""

from __future__ import annotations

import ast
import logging
import re

import anthropic

from agentsync.errors import MergeError
from agentsync.llm.client import LLMClient
from agentsync.merge import CanonicalComponent, MergeMode, MergeRequest, MergeResponse
from agentsync.merge.prompts import MERGE_SYSTEM_PROMPT, build_merge_prompt

logger = logging.getLogger(__name__)

_OPEN_FENCE = re.compile(r"^\s*```(?:python|py)?[ \t]*\n", re.IGNORECASE)
_CLOSE_FENCE = re.compile(r"\n?```\s*$")


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if the model added one."""
    content = _OPEN_FENCE.sub("", content, count=1)
    return _CLOSE_FENCE.sub("", content, count=1)


class LLMMergeOracle:
    name = "llm"

    def __init__(self, client: LLMClient, max_tokens: int = 16000):
        self.client = client
        self.max_tokens = max_tokens

    def merge(self, request: MergeRequest) -> MergeResponse:
        if not self.client.configured:
            raise MergeError(f"{request.path}: LLM merge oracle is not configured")

        prompt = build_merge_prompt(request)
        try:
            response = self.client.complete(
                prompt,
                system_prompt=MERGE_SYSTEM_PROMPT,
                max_tokens=self.max_tokens,
                temperature=0.0,
            )
        except anthropic.APIError as exc:
            raise MergeError(f"{request.path}: merge request failed: {exc}") from exc

        logger.info(
            "LLM merge of %s: %d input / %d output tokens, ~$%.4f, %dms",
            request.path,
            response.input_tokens,
            response.output_tokens,
            response.cost_estimate,
            response.latency_ms,
        )
        if response.stop_reason == "max_tokens":
            raise MergeError(f"{request.path}: merge response was truncated")

        merged = strip_code_fences(response.content)
        if not merged.strip():
            raise MergeError(f"{request.path}: merge response was empty")
        if not merged.endswith("\n"):
            merged += "\n"
        try:
            ast.parse(merged, filename=request.path)
        except SyntaxError as exc:
            raise MergeError(f"{request.path}: merged file does not parse: {exc}") from exc

        warnings = []
        for comp in request.components:
            if comp.mode is MergeMode.REMOVE:
                continue
            if not _contains_verbatim(merged, comp):
                message = (
                    f"{request.path}: canonical text of {comp.kind.value} "
                    f"'{comp.identifier}' was not kept verbatim"
                )
                logger.warning(message)
                warnings.append(message)
        return MergeResponse(merged_text=merged, warnings=warnings)


def _contains_verbatim(merged: str, comp: CanonicalComponent) -> bool:
    if not comp.is_inline:
        return comp.text in merged
    # Inline text is re-indented at its call site; compare line by line.
    return all(line.strip() in merged for line in comp.text.splitlines())
