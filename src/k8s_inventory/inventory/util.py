"""Helpers shared by the inventory fetchers."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from functools import lru_cache
from typing import Any

ListPage = Callable[[int, str, int], tuple[list[Any], str]]


def paginate(list_page: ListPage, batch_size: int, timeout_seconds: int) -> Iterator[Any]:
    """Yield every item of a paginated list call.

    *list_page* is called with ``(limit, continue_token, timeout_seconds)``
    until the API server stops returning a continue token.
    """
    continue_token = ""
    while True:
        items, continue_token = list_page(batch_size, continue_token, timeout_seconds)
        yield from items
        if not continue_token:
            return


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def filter_metadata(
    values: dict[str, str] | None, include: list[str],
) -> dict[str, str] | None:
    """Keep only annotation/label keys matching one of the *include* regexes.

    With no include patterns every key is kept.
    """
    if not include or values is None:
        return values
    return {
        key: val
        for key, val in values.items()
        if any(_compile(pattern).search(key) for pattern in include)
    }
