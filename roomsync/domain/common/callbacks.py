from __future__ import annotations

import inspect
from typing import Any, Callable


async def invoke(callback: Callable[..., Any] | None, *args: Any) -> Any:
    """Call a plain or async callback and await the result if needed."""
    if callback is None:
        return None
    result = callback(*args)
    if inspect.isawaitable(result):
        return await result
    return result
