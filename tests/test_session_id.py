"""Tests for canonical session ids."""

import pytest

from vibesync.core.session_id import canonical_session_id, status_file_name


@pytest.mark.parametrize(
    "raw",
    ["abc123", "vibesync-abc123", "abc123.json", "vibesync-abc123.json", "  abc123\n"],
)
def test_canonical_session_id(raw):
    """Test every spelling of an id maps to the same canonical id."""
    assert canonical_session_id(raw) == "abc123"


def test_canonical_session_id_is_idempotent():
    once = canonical_session_id("vibesync-abc.json")
    assert canonical_session_id(once) == once


@pytest.mark.parametrize("raw", ["", "   ", "vibesync-.json", "a/b"])
def test_canonical_session_id_rejects_invalid(raw):
    with pytest.raises(ValueError):
        canonical_session_id(raw)


def test_status_file_name():
    assert status_file_name("vibesync-abc") == "abc.json"
