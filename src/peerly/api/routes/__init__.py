"""API Routes"""

from . import papers

__all__ = ["papers"]
