from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterator, List, Sequence, TypeVar


T = TypeVar("T")


def setup_logger(log_dir: str | Path, name: str = "page-i18n") -> logging.Logger:
    """Create a simple file+console logger."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Avoid adding multiple handlers when called once per run step
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")

    fh = logging.FileHandler(log_dir / "translate.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(fmt)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def sha1_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def fingerprint(fragment: str) -> str:
    """Cache key of a source fragment. Identical fragments share one key."""
    return sha1_text(fragment)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive fixed-size slices of ``items`` (the last one may be shorter)."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def is_blank(s: str) -> bool:
    return not s or not s.strip()


def to_posix(path: str) -> str:
    return path.replace("\\", "/")
