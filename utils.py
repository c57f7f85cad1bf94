"""
Utility functions for the voice bridge.
"""
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def normalize_event_to_dict(event: Any) -> Optional[Dict[str, Any]]:
    """Convert a raw websocket frame to a dictionary; None when it is not a JSON object."""
    if isinstance(event, dict):
        return event
    if isinstance(event, (bytes, bytearray)):
        try:
            event = event.decode()
        except UnicodeDecodeError:
            return None
    if isinstance(event, str):
        try:
            parsed = json.loads(event)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None

    model_dump = getattr(event, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        return dumped if isinstance(dumped, dict) else None

    return None


def as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def safe_task(coro, name: str = "task"):
    """Await a coroutine, logging instead of losing an unexpected exception."""
    try:
        return await coro
    except Exception:
        logger.exception("%s crashed", name)
