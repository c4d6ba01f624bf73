"""
Outbound notification dispatch for risk threshold crossings.

Fire-and-forget: delivery runs as a background task and failures are logged,
never propagated to the write that triggered them.
"""

import asyncio
from typing import Any, Dict, Set

import httpx

from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.config import settings

logger = get_logger("notifications")

# Strong references so pending tasks are not garbage collected mid-flight.
_pending: Set[asyncio.Task] = set()


async def _deliver(payload: Dict[str, Any]) -> None:
    if not settings.notification_webhook_url:
        logger.info("Risk alert (no webhook configured): %s", payload)
        return
    try:
        async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
            r = await client.post(settings.notification_webhook_url, json=payload)
            r.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Risk alert delivery failed for enrollment %s: %s", payload.get("enrollment_id"), exc)


def dispatch_risk_alert(payload: Dict[str, Any]) -> None:
    """Schedule delivery and return immediately."""
    try:
        task = asyncio.get_running_loop().create_task(_deliver(payload))
    except RuntimeError:
        logger.warning("No running event loop; risk alert dropped: %s", payload)
        return
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def wait_for_pending() -> None:
    """Await in-flight deliveries (used on shutdown and in tests)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
