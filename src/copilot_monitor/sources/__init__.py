"""Data sources feeding the monitor."""

from .base import (
    DataSource,
    DataSourceAuthError,
    DataSourceError,
    DataSourceTransientError,
    ItemLookupError,
    collect_work_items,
)
from .github import GitHubDataSource
from .static import StaticDataSource

__all__ = [
    "DataSource",
    "DataSourceAuthError",
    "DataSourceError",
    "DataSourceTransientError",
    "GitHubDataSource",
    "ItemLookupError",
    "StaticDataSource",
    "collect_work_items",
]
