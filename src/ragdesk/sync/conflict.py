"""Conflict resolution between local and remote copies of a document."""

from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from pydantic import BaseModel, Field


class ConflictPolicy(str, Enum):
    """How to settle a document that differs locally and remotely."""
    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"
    KEEP_BOTH = "keep-both"


class DocumentCopy(BaseModel):
    """One copy of a synced document."""
    name: str
    content: str
    modified_at: Optional[datetime] = None


class ConflictResolution(BaseModel):
    """Copies to keep in the document folder and copies to back up."""
    kept: list[DocumentCopy] = Field(default_factory=list)
    backed_up: list[DocumentCopy] = Field(default_factory=list)


def renamed(name: str, tag: str) -> str:
    """Insert ``tag`` between a filename's stem and suffix."""
    path = PurePosixPath(name)
    return str(path.with_name(f"{path.stem}{tag}{path.suffix}"))


def resolve_conflict(
    local: DocumentCopy,
    remote: DocumentCopy,
    policy: ConflictPolicy | str,
) -> ConflictResolution:
    """Decide which copies survive a sync conflict.

    Never prompts and never touches the filesystem; the caller applies
    the resolution. The discarded copy is always returned as a backup so
    nothing is lost.

    Args:
        local: The local copy
        remote: The remote copy
        policy: Resolution policy chosen by the user

    Returns:
        The copies to keep and the copies to back up

    Raises:
        ValueError: If the policy is unknown
    """
    policy = ConflictPolicy(policy)

    if local.content == remote.content:
        return ConflictResolution(kept=[local])

    if policy is ConflictPolicy.KEEP_LOCAL:
        return ConflictResolution(
            kept=[local],
            backed_up=[remote.model_copy(update={"name": renamed(remote.name, ".remote-backup")})],
        )

    if policy is ConflictPolicy.KEEP_REMOTE:
        return ConflictResolution(
            kept=[remote.model_copy(update={"name": local.name})],
            backed_up=[local.model_copy(update={"name": renamed(local.name, ".local-backup")})],
        )

    return ConflictResolution(
        kept=[local, remote.model_copy(update={"name": renamed(remote.name, " (remote)")})],
    )
