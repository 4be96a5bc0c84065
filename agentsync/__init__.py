"""agentsync — keep a local agent project tree in sync with its remote definition."""

__version__ = "0.1.0"
