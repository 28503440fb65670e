from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


@pytest.fixture
def memory_cache():
    """Fragment cache that never touches disk."""
    from page_i18n.cache import FragmentCache

    with FragmentCache(None) as cache:
        yield cache
