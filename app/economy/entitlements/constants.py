from __future__ import annotations

from datetime import timedelta

LOW_MESSAGE_THRESHOLD = 3
MESSAGE_SESSION_TTL = timedelta(days=30)
RESOURCES: tuple[str, ...] = ("chat", "content")

WARNING_NO_MESSAGES = "You've used all your messages. Purchase more to continue."
WARNING_LAST_MESSAGE = "This is your last message!"
