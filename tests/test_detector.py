"""Tests for the status directory detector."""

import os
from datetime import timedelta

import orjson

from vibesync.core.detector import StatusDirectoryDetector, is_process_running
from vibesync.core.status_files import get_status_dir, status_path, write_status

from conftest import START


def make_detector(home, clock, alive=True, **kwargs) -> StatusDirectoryDetector:
    return StatusDirectoryDetector(
        home=home, clock=clock, process_check=lambda pid: alive, **kwargs
    )


def test_no_status_dir(tmp_path, clock):
    assert make_detector(tmp_path, clock).scan() == []


def test_reads_status_files(tmp_path, clock):
    write_status("abc", "working", "webapp", pid=4242, timestamp=START, home=tmp_path)
    write_status("def", "needs_input", "api", pid=4343, timestamp=START, home=tmp_path)

    sessions = make_detector(tmp_path, clock).scan()

    assert [(s.session_id, s.status, s.project) for s in sessions] == [
        ("def", "needs_input", "api"),
        ("abc", "working", "webapp"),
    ]
    assert sessions[1].pid == 4242
    assert sessions[1].timestamp == START


def test_prefixed_file_name_maps_to_canonical_id(tmp_path, clock):
    status_dir = get_status_dir(tmp_path)
    status_dir.mkdir(parents=True)
    (status_dir / "vibesync-xyz.json").write_bytes(
        orjson.dumps({"state": "idle", "project": "webapp", "timestamp": START.isoformat()})
    )

    [session] = make_detector(tmp_path, clock).scan()
    assert session.session_id == "xyz"


def test_missing_project_is_unknown(tmp_path, clock):
    write_status("abc", "idle", "", timestamp=START, home=tmp_path)

    [session] = make_detector(tmp_path, clock).scan()
    assert session.project == "Unknown"


def test_expired_status_file_is_removed(tmp_path, clock):
    write_status("abc", "idle", "webapp", timestamp=START, home=tmp_path)
    detector = make_detector(tmp_path, clock, status_ttl=600)

    clock.advance(599)
    assert len(detector.scan()) == 1

    clock.advance(1)
    assert detector.scan() == []
    assert not status_path("abc", tmp_path).exists()


def test_dead_process_removed_only_after_grace_period(tmp_path, clock):
    """Test a dead pid is trusted only once the session is a minute old."""
    write_status("abc", "working", "webapp", pid=999999, timestamp=START, home=tmp_path)
    detector = make_detector(tmp_path, clock, alive=False)

    clock.advance(30)
    assert len(detector.scan()) == 1

    clock.advance(31)
    assert detector.scan() == []
    assert not status_path("abc", tmp_path).exists()


def test_live_process_is_kept(tmp_path, clock):
    write_status("abc", "working", "webapp", pid=4242, timestamp=START, home=tmp_path)
    clock.advance(300)

    assert len(make_detector(tmp_path, clock, alive=True).scan()) == 1


def test_malformed_files_are_counted(tmp_path, clock):
    write_status("abc", "idle", "webapp", timestamp=START, home=tmp_path)
    status_dir = get_status_dir(tmp_path)
    (status_dir / "broken.json").write_text("{not json")
    (status_dir / "badstate.json").write_bytes(
        orjson.dumps({"state": "sleeping", "timestamp": START.isoformat()})
    )
    (status_dir / "nostate.json").write_bytes(
        orjson.dumps({"project": "x", "timestamp": START.isoformat()})
    )
    (status_dir / "array.json").write_bytes(orjson.dumps(["working"]))
    detector = make_detector(tmp_path, clock)

    sessions = detector.scan()

    assert [s.session_id for s in sessions] == ["abc"]
    assert detector.last_error_count == 4


def test_future_timestamps_are_kept(tmp_path, clock):
    write_status(
        "abc", "idle", "webapp", timestamp=START + timedelta(seconds=5), home=tmp_path
    )

    assert len(make_detector(tmp_path, clock).scan()) == 1


def test_is_process_running_for_self():
    assert is_process_running(os.getpid())
