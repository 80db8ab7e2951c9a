"""Logging setup shared by the CLI and the web app."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the ``modqueue`` logger tree."""
    root = logging.getLogger("modqueue")
    root.setLevel(level.upper())
    if not any(getattr(h, "_modqueue", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._modqueue = True  # type: ignore[attr-defined]
        root.addHandler(handler)
