from __future__ import annotations

import gzip
import os
import time
from pathlib import Path

import allure

from ralph_loop.supervisor.retention import LogRetentionManager

pytestmark = [
    allure.epic("Supervisor Loop"),
    allure.feature("Log Retention"),
]

DAY = 86_400


def _touch(path: Path, *, age_days: float, now: float, size: int = 10) -> Path:
    path.write_bytes(b"x" * size)
    mtime = now - age_days * DAY
    os.utime(path, (mtime, mtime))
    return path


def test_retain_deletes_only_expired_logs(tmp_path: Path) -> None:
    now = time.time()
    old_plain = _touch(tmp_path / "20240101000000.jsonl", age_days=8, now=now)
    old_gz = _touch(tmp_path / "20240101000001.jsonl.gz", age_days=30, now=now)
    fresh = _touch(tmp_path / "20240110000000.jsonl", age_days=1, now=now)
    unrelated = _touch(tmp_path / "notes.txt", age_days=30, now=now)

    deleted = LogRetentionManager().retain(tmp_path, 7, now=now)

    assert sorted(deleted) == sorted([old_plain, old_gz])
    assert fresh.exists()
    assert unrelated.exists()


def test_retain_zero_days_deletes_everything_older_than_now(tmp_path: Path) -> None:
    now = time.time()
    log = _touch(tmp_path / "a.jsonl", age_days=0.01, now=now)

    assert LogRetentionManager().retain(tmp_path, 0, now=now) == [log]


def test_missing_directory_is_a_no_op(tmp_path: Path) -> None:
    manager = LogRetentionManager()

    assert manager.retain(tmp_path / "absent", 7) == []
    assert manager.rotate(tmp_path / "absent", 1) == []


def test_rotate_compresses_large_logs_in_background(tmp_path: Path) -> None:
    large = tmp_path / "large.jsonl"
    large.write_bytes(b'{"type":"assistant"}\n' * 100)
    small = tmp_path / "small.jsonl"
    small.write_bytes(b"{}\n")

    threads = LogRetentionManager().rotate(tmp_path, max_bytes=100)
    for thread in threads:
        thread.join(timeout=10)

    assert len(threads) == 1
    assert not large.exists()
    with gzip.open(tmp_path / "large.jsonl.gz", "rb") as handle:
        assert handle.read() == b'{"type":"assistant"}\n' * 100
    assert small.exists()
    assert not (tmp_path / "large.jsonl.gz.partial").exists()


def test_rotate_skips_active_log(tmp_path: Path) -> None:
    active = tmp_path / "active.jsonl"
    active.write_bytes(b"x" * 1_000)

    threads = LogRetentionManager().rotate(tmp_path, max_bytes=10, active_log=active)

    assert threads == []
    assert active.exists()
