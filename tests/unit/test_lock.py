"""Unit tests for the single-instance guard."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from smart_pilot.middleware.error_handler import AlreadyRunningError
from smart_pilot.pilot.lock import InstanceLock


def test_acquire_writes_pid(tmp_path: Path):
    path = tmp_path / "state" / "pilot.lock"
    lock = InstanceLock(path)
    lock.acquire()
    assert lock.owned
    assert (tmp_path / "state" / "pilot.pid").read_text(encoding="utf-8") == str(os.getpid())
    lock.release()
    assert not lock.owned
    assert not (tmp_path / "state" / "pilot.pid").exists()


def test_held_lock_blocks_second_instance(tmp_path: Path):
    first = InstanceLock(tmp_path / "pilot.lock")
    first.acquire()
    try:
        with pytest.raises(AlreadyRunningError) as exc_info:
            InstanceLock(tmp_path / "pilot.lock").acquire()
        assert exc_info.value.details["pid"] == os.getpid()
    finally:
        first.release()


def test_leftover_pid_file_never_yields_two_holders(tmp_path: Path):
    # PID file left behind by a crashed pilot
    (tmp_path / "pilot.pid").write_text("424242", encoding="utf-8")
    a = InstanceLock(tmp_path / "pilot.lock")
    b = InstanceLock(tmp_path / "pilot.lock")

    a.acquire()
    with pytest.raises(AlreadyRunningError):
        b.acquire()
    assert a.owned and not b.owned

    a.release()
    b.acquire()
    assert b.owned
    b.release()


def test_leftover_pid_file_does_not_block(tmp_path: Path):
    (tmp_path / "pilot.pid").write_text("not-a-pid", encoding="utf-8")
    with InstanceLock(tmp_path / "pilot.lock") as lock:
        assert lock.owned
        assert (tmp_path / "pilot.pid").read_text(encoding="utf-8") == str(os.getpid())
    assert not (tmp_path / "pilot.pid").exists()


def test_release_leaves_foreign_pid_file(tmp_path: Path):
    lock = InstanceLock(tmp_path / "pilot.lock")
    lock.acquire()
    (tmp_path / "pilot.pid").write_text("424242", encoding="utf-8")
    lock.release()
    assert (tmp_path / "pilot.pid").exists()


def test_explicit_pid_path(tmp_path: Path):
    pid_path = tmp_path / "run" / "owner.pid"
    pid_path.parent.mkdir()
    with InstanceLock(tmp_path / "pilot.lock", pid_path):
        assert pid_path.read_text(encoding="utf-8") == str(os.getpid())


def test_release_without_acquire_is_noop(tmp_path: Path):
    InstanceLock(tmp_path / "pilot.lock").release()
