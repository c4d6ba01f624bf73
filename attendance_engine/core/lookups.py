"""Fail-fast wrapper for calendar and cascade lookups."""

import asyncio
from typing import Awaitable, Optional, TypeVar

from attendance_engine.core.config import settings
from attendance_engine.core.exceptions import LookupTimeoutError

T = TypeVar("T")


async def with_lookup_timeout(aw: Awaitable[T], what: str, timeout: Optional[float] = None) -> T:
    """Await a lookup, converting a slow response into a retryable LookupTimeoutError."""
    limit = settings.lookup_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(aw, timeout=limit)
    except asyncio.TimeoutError:
        raise LookupTimeoutError(f"{what} lookup timed out after {limit:g}s; retry the request")
