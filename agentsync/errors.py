"""Exception taxonomy for the sync engine.

Structural defects abort a sync immediately. Merge failures and validation
mismatches are recoverable and drive another attempt of the promotion loop.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by agentsync."""


class ConfigError(SyncError):
    """The configuration file or an option value is invalid."""


class RemoteError(SyncError):
    """The remote definition could not be fetched or decoded."""


class LoaderError(SyncError):
    """A source tree could not be evaluated into a definition."""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details


class CredentialNotFoundError(LoaderError):
    """A credential referenced by the tree has no configured value."""


class StructuralDefectError(SyncError):
    """Deterministic generation failed; the remote data or the engine is wrong.

    Never retried.
    """


class MergeError(SyncError):
    """One or more merge-oracle calls failed for this attempt."""

    def __init__(self, message: str, failures: dict[str, str] | None = None):
        super().__init__(message)
        self.failures = failures or {}


class ValidationMismatchError(SyncError):
    """The round-tripped candidate tree does not match the remote definition."""

    def __init__(self, message: str, differences: list | None = None):
        super().__init__(message)
        self.differences = differences or []


class RetriesExhaustedError(SyncError):
    """Every attempt failed; carries the last concrete error."""

    def __init__(self, attempts: int, last_error: Exception | None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Sync failed after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class SyncCancelledError(SyncError):
    """Promotion was declined at the confirmation step."""
