"""Hacker News and Reddit connector."""

from .fetcher import NewsFetcher

__all__ = ["NewsFetcher"]
