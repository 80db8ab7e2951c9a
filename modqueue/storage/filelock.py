"""Cross-process locking for the JSON documents under the data directory.

Every process that opens the same data directory (the CLI, each web worker)
serializes its commits through an ``fcntl`` lock on a sibling ``.lock`` file.
"""

from __future__ import annotations

import fcntl
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from modqueue.errors import TransientError

_POLL_SECONDS = 0.01


@contextmanager
def file_lock(path: Path, timeout: float, label: str) -> Iterator[None]:
    """Hold an exclusive lock on ``path`` for the duration of the block.

    Raises :class:`TransientError` if the lock is not free within ``timeout``.
    """
    deadline = time.monotonic() + timeout
    try:
        fh = path.open("a")
    except OSError as exc:
        raise TransientError(f"Cannot open lock file for the {label}: {exc}") from exc
    with fh:
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise TransientError(f"Timed out after {timeout}s waiting for the {label}") from None
                time.sleep(_POLL_SECONDS)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
