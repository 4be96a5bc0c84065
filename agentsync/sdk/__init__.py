"""Builder SDK for agentsync project trees.

A project tree imports its vocabulary from here::

    from agentsync.sdk import agent, mcp_tool, project, sub_agent
"""

from agentsync.sdk.builders import (
    Agent,
    ArtifactComponent,
    Credential,
    DataComponent,
    Function,
    FunctionTool,
    McpTool,
    Project,
    StatusComponent,
    StatusUpdates,
    SubAgent,
    ToolUse,
    agent,
    artifact_component,
    credential,
    data_component,
    function,
    function_tool,
    mcp_tool,
    project,
    status_component,
    status_updates,
    sub_agent,
    use,
)

__all__ = [
    "Agent",
    "ArtifactComponent",
    "Credential",
    "DataComponent",
    "Function",
    "FunctionTool",
    "McpTool",
    "Project",
    "StatusComponent",
    "StatusUpdates",
    "SubAgent",
    "ToolUse",
    "agent",
    "artifact_component",
    "credential",
    "data_component",
    "function",
    "function_tool",
    "mcp_tool",
    "project",
    "status_component",
    "status_updates",
    "sub_agent",
    "use",
]
