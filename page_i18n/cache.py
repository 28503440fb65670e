from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Optional

from . import storage


class FragmentCache:
    """
    Translations already obtained, keyed by source fragment fingerprint.

    Layout on disk (one pretty-printed JSON object):

        {"<sha1>": {"fr": "<translated fragment>", "ja": "..."}}

    Lifecycle is explicit: ``open()`` once before the run, ``close()`` at the
    end. ``put`` may be called from worker threads; ``flush`` calls are
    serialized so two writers never interleave on the file.
    """

    def __init__(self, path: Optional[str | Path], logger: Optional[logging.Logger] = None):
        self.path = Path(path) if path else None
        self.logger = logger
        self._entries: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._dirty = False
        self._opened = False

    def __enter__(self) -> "FragmentCache":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fp: str) -> bool:
        with self._lock:
            return fp in self._entries

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> "FragmentCache":
        if self._opened:
            return self
        self._opened = True
        if not self.path or not self.path.exists():
            return self
        try:
            data = storage.read_json(self.path)
        except (OSError, ValueError) as exc:
            if self.logger:
                self.logger.warning("Fragment cache %s unreadable, starting cold: %s", self.path, exc)
            return self
        if not isinstance(data, dict):
            if self.logger:
                self.logger.warning("Fragment cache %s is not a JSON object, starting cold.", self.path)
            return self

        entries: Dict[str, Dict[str, str]] = {}
        for fp, langs in data.items():
            if not isinstance(langs, dict):
                continue
            entries[fp] = {lang: text for lang, text in langs.items() if isinstance(text, str)}
        with self._lock:
            self._entries = entries
        if self.logger:
            self.logger.info("Fragment cache loaded: %s fragments from %s", len(entries), self.path)
        return self

    def get(self, fp: str, lang: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(fp, {}).get(lang)

    def put(self, fp: str, lang: str, fragment: str) -> None:
        with self._lock:
            self._entries.setdefault(fp, {})[lang] = fragment
            self._dirty = True

    def flush(self) -> bool:
        """Persist the whole map. Returns False (and keeps memory intact) if the write fails."""
        if not self.path:
            return True
        with self._flush_lock:
            with self._lock:
                if not self._dirty:
                    return True
                snapshot = {fp: dict(langs) for fp, langs in self._entries.items()}
                self._dirty = False
            try:
                storage.write_json_atomic(self.path, snapshot)
            except (OSError, TypeError, ValueError) as exc:
                with self._lock:
                    self._dirty = True
                if self.logger:
                    self.logger.warning("Failed to save fragment cache %s: %s", self.path, exc)
                return False
        return True

    def close(self) -> None:
        self.flush()
        self._opened = False

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        with self._lock:
            return {fp: dict(langs) for fp, langs in self._entries.items()}
