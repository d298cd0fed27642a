"""Document sync helpers."""

from .conflict import ConflictPolicy, ConflictResolution, DocumentCopy, resolve_conflict

__all__ = ["ConflictPolicy", "ConflictResolution", "DocumentCopy", "resolve_conflict"]
