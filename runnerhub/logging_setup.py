from __future__ import annotations

import logging


_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%H:%M:%S"


def configure_console_logging(level: str | int = logging.INFO) -> None:
    """Console logging for scripts; reuses existing root handlers if a host already set them up."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    formatter = logging.Formatter(_FMT, datefmt=_DATEFMT)
    root = logging.getLogger()
    if root.handlers:
        for h in root.handlers:
            h.setFormatter(formatter)
        root.setLevel(int(level))
        return
    logging.basicConfig(level=int(level), format=_FMT, datefmt=_DATEFMT)
