"""
Action hooks for one execution.

The host runtime owns the real hook dispatch. HookRegistry is the narrow
adapter the cache engine talks to: triggers subscribe to host events here and
the registry announces flushes and purges through it.
"""
import inspect
import itertools
from collections import Counter
from typing import Any, Callable, Dict, List, Tuple

import structlog

logger = structlog.get_logger(__name__)


class HookRegistry:
    """Priority-ordered action callbacks, sync or async."""

    def __init__(self):
        self._actions: Dict[str, List[Tuple[int, int, Callable[..., Any]]]] = {}
        self._sequence = itertools.count()
        self.fired: Counter = Counter()

    def add_action(self, name: str, callback: Callable[..., Any], priority: int = 10) -> None:
        """Register a callback for an action. Lower priorities run first."""
        self._actions.setdefault(name, []).append((priority, next(self._sequence), callback))

    def has_action(self, name: str) -> bool:
        """Check whether any callback listens to an action."""
        return bool(self._actions.get(name))

    def did_action(self, name: str) -> int:
        """Number of times an action has fired."""
        return self.fired[name]

    async def do_action(self, name: str, *args: Any) -> None:
        """Fire an action, awaiting async callbacks in order."""
        self.fired[name] += 1

        for _, _, callback in sorted(self._actions.get(name, []), key=lambda entry: entry[:2]):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

        logger.debug("Action fired", action=name)
