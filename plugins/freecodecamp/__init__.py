"""freeCodeCamp curriculum connector."""

from .fetcher import FreeCodeCampFetcher

__all__ = ["FreeCodeCampFetcher"]
