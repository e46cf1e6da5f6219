"""
System API routers.
"""

from . import cache, health

__all__ = ["cache", "health"]
