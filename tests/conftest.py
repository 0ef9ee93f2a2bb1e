from __future__ import annotations

from collections.abc import Iterator

import pytest

from main import get_search_monitor


@pytest.fixture(autouse=True)
def reset_search_monitor() -> Iterator[None]:
    get_search_monitor.cache_clear()
    yield
    get_search_monitor.cache_clear()
