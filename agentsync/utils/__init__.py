"""Filesystem and version-control helpers."""
