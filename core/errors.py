from __future__ import annotations

__all__ = ["ExternalToolError", "InputError", "SlideSyncError"]


class SlideSyncError(RuntimeError):
    """Base class for failures surfaced to the user."""


class InputError(SlideSyncError):
    """A user supplied path is missing, unreadable, a directory or of an unsupported type."""


class ExternalToolError(SlideSyncError):
    """An external program or decoder failed for one document or video."""
