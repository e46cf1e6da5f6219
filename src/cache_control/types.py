"""
Cache types, flush outcomes and errors for the cache control engine.
"""
from enum import Enum
from typing import Iterable, List, Optional, Union


class CacheType(str, Enum):
    """Cache tier enumeration."""
    HTTP = "http"
    OBJECT = "object"
    OPCODE = "opcode"
    TRANSIENT = "transient"

    @property
    def label(self) -> str:
        """Human-readable tier name."""
        return "HTTP" if self is CacheType.HTTP else self.value


ALL_CACHE_TYPES = (
    CacheType.HTTP,
    CacheType.OBJECT,
    CacheType.OPCODE,
    CacheType.TRANSIENT,
)

# True for a completed flush, or the number of rows removed (transient tier)
FlushOutcome = Union[bool, int]


class CacheControlError(Exception):
    """Base exception for cache control operations."""
    pass


class CacheFlushError(CacheControlError):
    """A cache tier could not be flushed."""

    def __init__(self, cache_type: CacheType, message: str):
        super().__init__(message)
        self.cache_type = cache_type
        self.message = message


class TaxonomyError(CacheControlError):
    """Terms could not be loaded for a taxonomy."""
    pass


def coerce_cache_type(value: Union[str, CacheType, None]) -> Optional[CacheType]:
    """Return the matching CacheType, or None for unknown names."""
    if isinstance(value, CacheType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return CacheType(value.strip().lower())
    except ValueError:
        return None


def normalize_cache_types(types: Optional[Iterable[Union[str, CacheType]]]) -> List[CacheType]:
    """
    Normalize a flush request.

    Empty or missing input selects every tier. Unknown names are dropped, so a
    request made only of unknown names selects nothing. The result follows
    ALL_CACHE_TYPES order.
    """
    if types is None:
        return list(ALL_CACHE_TYPES)
    if isinstance(types, str):
        types = [types]

    given = [t for t in types if t]
    if not given:
        return list(ALL_CACHE_TYPES)

    wanted = {coerce_cache_type(t) for t in given}
    return [t for t in ALL_CACHE_TYPES if t in wanted]


def is_flush_success(outcome) -> bool:
    """Check whether a driver outcome counts as a successful flush."""
    if outcome is True:
        return True
    return isinstance(outcome, int) and not isinstance(outcome, bool) and outcome >= 0


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated parameter, dropping empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
