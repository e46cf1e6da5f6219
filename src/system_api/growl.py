"""
System API - Growl Notices

One-shot notices queued in a cookie and shown on the next page view.
"""
import json
import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

GROWL_COOKIE = "mwp_system_growl"


class GrowlQueue:
    """Unique notice messages bound for the growl cookie."""

    def __init__(self, messages: Optional[Iterable[str]] = None, max_messages: int = 10):
        self.max_messages = max_messages
        self.messages: List[str] = []
        self.changed = False

        for message in messages or ():
            self._append(message)

    @classmethod
    def from_cookie(cls, value: Optional[str], max_messages: int = 10) -> "GrowlQueue":
        """Decode a growl cookie. Malformed values yield an empty queue."""
        if not value:
            return cls(max_messages=max_messages)

        try:
            messages = json.loads(value)
        except ValueError:
            logger.debug("Discarding malformed growl cookie")
            return cls(max_messages=max_messages)

        if not isinstance(messages, list):
            return cls(max_messages=max_messages)

        return cls((m for m in messages if isinstance(m, str)), max_messages=max_messages)

    def _append(self, message: str) -> bool:
        if not message or message in self.messages:
            return False

        self.messages.append(message)
        del self.messages[:-self.max_messages]
        return True

    def add(self, message: str) -> None:
        if self._append(message):
            self.changed = True

    def to_cookie(self) -> str:
        return json.dumps(self.messages)

    def __bool__(self) -> bool:
        return bool(self.messages)

    def __len__(self) -> int:
        return len(self.messages)
