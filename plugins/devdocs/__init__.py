"""DevDocs connector."""

from .fetcher import DevDocsFetcher

__all__ = ["DevDocsFetcher"]
