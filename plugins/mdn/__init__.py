"""MDN Web Docs connector."""

from .fetcher import MdnFetcher

__all__ = ["MdnFetcher"]
