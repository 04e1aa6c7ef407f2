"""Repository pattern layer for Herald.

Provides abstract protocol interfaces and a resolve() helper that
transparently handles both sync (in-memory) and async (SQL) store returns.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, TypeVar

T = TypeVar("T")


async def resolve(value: T | Awaitable[T]) -> T:
    """Await a value if it is a coroutine, otherwise return it directly.

    This allows callers to use template stores uniformly:
        template = await resolve(store.find_active_by_name(name, channel))

    In-memory stores return plain values; SQL repos return coroutines.
    """
    if inspect.isawaitable(value):
        return await value  # type: ignore[return-value]
    return value  # type: ignore[return-value]
