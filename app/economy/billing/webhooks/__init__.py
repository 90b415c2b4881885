from __future__ import annotations

from .processor import process_provider_event
from .registry import EVENT_HANDLERS, get_event_handler

__all__ = [
    "EVENT_HANDLERS",
    "get_event_handler",
    "process_provider_event",
]
