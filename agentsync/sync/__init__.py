"""Sync engine — locate, resolve, orchestrate, validate and promote.

This package provides the stages of one sync run:
- Locator: where each component is declared in the local tree
- Dependency resolver: what a regenerated component must import
- Orchestrator: deterministic generation plus assisted merges
- Sandbox validator: round-trip check of the candidate tree
- Runner: the bounded retry loop and atomic promotion
"""
