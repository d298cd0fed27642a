"""Tests for sync conflict resolution."""

from datetime import datetime, timezone

import pytest

from ragdesk.sync import ConflictPolicy, DocumentCopy, resolve_conflict
from ragdesk.sync.conflict import renamed

LOCAL = DocumentCopy(
    name="machinery_directive.txt",
    content="Local edits",
    modified_at=datetime(2024, 5, 2, tzinfo=timezone.utc),
)
REMOTE = DocumentCopy(
    name="machinery_directive.txt",
    content="Remote edits",
    modified_at=datetime(2024, 5, 3, tzinfo=timezone.utc),
)


class TestRenamed:
    """Tests for backup filenames."""

    def test_inserts_tag_before_suffix(self):
        assert renamed("guide.txt", ".remote-backup") == "guide.remote-backup.txt"

    def test_keeps_directory(self):
        assert renamed("docs/guide.txt", " (remote)") == "docs/guide (remote).txt"

    def test_no_suffix(self):
        assert renamed("README", ".local-backup") == "README.local-backup"


class TestResolveConflict:
    """Tests for conflict policies."""

    def test_keep_local(self):
        resolution = resolve_conflict(LOCAL, REMOTE, ConflictPolicy.KEEP_LOCAL)

        assert resolution.kept == [LOCAL]
        assert [c.name for c in resolution.backed_up] == ["machinery_directive.remote-backup.txt"]
        assert resolution.backed_up[0].content == "Remote edits"

    def test_keep_remote(self):
        resolution = resolve_conflict(LOCAL, REMOTE, ConflictPolicy.KEEP_REMOTE)

        assert [(c.name, c.content) for c in resolution.kept] == [
            ("machinery_directive.txt", "Remote edits"),
        ]
        assert [(c.name, c.content) for c in resolution.backed_up] == [
            ("machinery_directive.local-backup.txt", "Local edits"),
        ]

    def test_keep_both(self):
        resolution = resolve_conflict(LOCAL, REMOTE, "keep-both")

        assert [c.name for c in resolution.kept] == [
            "machinery_directive.txt",
            "machinery_directive (remote).txt",
        ]
        assert resolution.backed_up == []

    @pytest.mark.parametrize("policy", list(ConflictPolicy))
    def test_identical_content_keeps_local(self, policy):
        remote = REMOTE.model_copy(update={"content": LOCAL.content})

        resolution = resolve_conflict(LOCAL, remote, policy)

        assert resolution.kept == [LOCAL]
        assert resolution.backed_up == []

    @pytest.mark.parametrize("policy", list(ConflictPolicy))
    def test_no_content_lost(self, policy):
        resolution = resolve_conflict(LOCAL, REMOTE, policy)
        contents = {c.content for c in resolution.kept + resolution.backed_up}

        assert contents == {"Local edits", "Remote edits"}

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            resolve_conflict(LOCAL, REMOTE, "ask-user")
