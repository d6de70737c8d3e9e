"""Tests for commit change detection."""

from line_notes.commit_tracker import CommitTracker


class TestCommitTracker:
    """Tests for CommitTracker."""

    def test_first_observation_is_a_change(self):
        tracker = CommitTracker()
        assert tracker.observe("abc") is True
        assert tracker.last_commit == "abc"

    def test_same_commit_is_not_a_change(self):
        tracker = CommitTracker("abc")
        assert tracker.observe("abc") is False

    def test_new_commit_is_a_change(self):
        tracker = CommitTracker("abc")
        assert tracker.observe("def") is True
        assert tracker.observe("def") is False
        assert tracker.last_commit == "def"

    def test_none_never_changes(self):
        """An unavailable commit neither triggers nor overwrites."""
        tracker = CommitTracker("abc")
        assert tracker.observe(None) is False
        assert tracker.last_commit == "abc"
        assert CommitTracker().observe(None) is False

    def test_has_changed_does_not_remember(self):
        tracker = CommitTracker("abc")
        assert tracker.has_changed("def") is True
        assert tracker.last_commit == "abc"

    def test_reset(self):
        tracker = CommitTracker("abc")
        tracker.reset()
        assert tracker.last_commit is None
        assert tracker.observe("abc") is True
