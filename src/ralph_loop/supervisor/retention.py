"""Compression and age-based deletion of iteration logs."""

from __future__ import annotations

import gzip
import logging
import shutil
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"
_SECONDS_PER_DAY = 86_400


class LogRetentionManager:
    """Keeps the iteration log directory bounded in size and age."""

    def rotate(
        self,
        log_dir: Path,
        max_bytes: int,
        *,
        active_log: Path | None = None,
    ) -> list[threading.Thread]:
        """Start background gzip of every finished log larger than ``max_bytes``.

        Returns the compression threads so callers may join them; the
        supervisor does not.
        """

        if not log_dir.is_dir():
            return []

        threads: list[threading.Thread] = []
        for log_file in sorted(log_dir.glob(f"*{LOG_SUFFIX}")):
            if active_log is not None and log_file.resolve() == active_log.resolve():
                continue
            try:
                size_bytes = log_file.stat().st_size
            except FileNotFoundError:
                continue
            if size_bytes <= max_bytes:
                continue
            logger.info("Compressing large log file: %s (%d bytes)", log_file, size_bytes)
            thread = threading.Thread(
                target=_compress_file,
                args=(log_file,),
                name=f"compress-{log_file.name}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        return threads

    def retain(
        self,
        log_dir: Path,
        max_age_days: int,
        *,
        now: float | None = None,
    ) -> list[Path]:
        """Delete logs (compressed or not) older than ``max_age_days``."""

        if not log_dir.is_dir():
            return []

        cutoff = (time.time() if now is None else now) - max_age_days * _SECONDS_PER_DAY
        deleted: list[Path] = []
        for log_file in sorted(log_dir.glob(f"*{LOG_SUFFIX}*")):
            try:
                if not log_file.is_file() or log_file.stat().st_mtime >= cutoff:
                    continue
                log_file.unlink()
            except FileNotFoundError:
                continue
            deleted.append(log_file)
        if deleted:
            logger.info("Deleted %d log file(s) older than %d days", len(deleted), max_age_days)
        return deleted


def _compress_file(source: Path) -> None:
    target = source.with_name(source.name + ".gz")
    partial = source.with_name(source.name + ".gz.partial")
    try:
        with source.open("rb") as reader, gzip.open(partial, "wb") as writer:
            shutil.copyfileobj(reader, writer)
        partial.replace(target)
        source.unlink()
    except OSError as error:
        logger.warning("Failed to compress %s: %s", source, error)
        partial.unlink(missing_ok=True)
