"""Shared fixtures: a sample remote definition and a loadable environment."""

import copy
import os
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent

SUPPORT_DESK = {
    "id": "support-desk",
    "name": "Support Desk",
    "description": "Customer support project",
    "models": {"base": {"model": "anthropic/claude-sonnet-4-5"}},
    "createdAt": "2025-01-01T00:00:00Z",
    "updatedAt": "2025-01-02T00:00:00Z",
    "agents": {
        "support-agent": {
            "name": "Support Agent",
            "prompt": "Help customers with their questions.",
            "defaultSubAgentId": "triage",
            "subAgents": {
                "triage": {
                    "name": "Triage",
                    "prompt": "Route each request.\nBe brief.",
                    "canUse": [{"toolId": "knowledge-base"}],
                    "canTransferTo": ["billing"],
                    "dataComponents": ["ticket-card"],
                },
                "billing": {
                    "name": "Billing",
                    "canUse": [{"toolId": "refund-lookup", "headers": {"x-team": "billing"}}],
                    "canTransferTo": ["triage"],
                },
            },
        },
    },
    "tools": {
        "knowledge-base": {
            "name": "Knowledge Base",
            "config": {
                "type": "mcp",
                "mcp": {
                    "server": {"url": "https://kb.example.com/mcp"},
                    "transport": {"type": "streamable_http"},
                },
            },
            "credentialReferenceId": "kb-key",
        },
    },
    "functionTools": {
        "refund-lookup": {"name": "Refund Lookup", "functionId": "lookup-refund"},
    },
    "functions": {
        "lookup-refund": {
            "executeCode": "async ({ orderId }) => {\n  return { orderId };\n}",
            "inputSchema": {
                "type": "object",
                "properties": {"orderId": {"type": "string"}},
            },
        },
    },
    "dataComponents": {
        "ticket-card": {"name": "Ticket Card", "props": {"type": "object"}},
    },
    "credentialReferences": {
        "kb-key": {
            "name": "KB key",
            "type": "memory",
            "credentialStoreId": "memory-default",
            "retrievalParams": {"key": "KB_API_KEY"},
        },
    },
}


@pytest.fixture
def definition_data():
    """A fresh, mutable copy of the sample remote definition."""
    return copy.deepcopy(SUPPORT_DESK)


@pytest.fixture
def loader_env(monkeypatch):
    """Let the loader subprocess import agentsync from this checkout."""
    existing = os.environ.get("PYTHONPATH", "")
    monkeypatch.setenv(
        "PYTHONPATH", os.pathsep.join(p for p in (str(REPO_ROOT), existing) if p)
    )
    monkeypatch.delenv("KB_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
