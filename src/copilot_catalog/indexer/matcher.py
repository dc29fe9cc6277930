"""
Keyword matching over an in-memory catalog.

A query matches an item only if EVERY keyword appears in the item's
cheap fields: lowercased title, category name and path segments.
The description is never searched, so matching never forces a
per-item network fetch.

An empty query matches nothing (never "everything").
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import CatalogItem, Category

_PATH_SEPARATORS = re.compile(r"[/\\]")

SUGGESTIONS: tuple[str, ...] = (
    "azure",
    "dotnet",
    "react",
    "typescript",
    "python",
    "testing",
    "docker",
    "kubernetes",
    "azure dotnet",
    "react typescript",
    "python testing",
    "docker kubernetes",
)


def tokenize(query: str) -> list[str]:
    """Split a query on whitespace, lowercased, without empty tokens."""
    return [token for token in query.lower().split() if token]


def path_haystack(path: str, category: Category) -> str:
    """Searchable text for a path that has not been mapped to an item yet."""
    return " ".join([category.value, *_PATH_SEPARATORS.split(path.lower())])


def item_haystack(item: CatalogItem) -> str:
    return " ".join([item.title.lower(), path_haystack(item.path, item.category)])


def matches_all(haystack: str, keywords: list[str]) -> bool:
    return bool(keywords) and all(keyword in haystack for keyword in keywords)


@dataclass
class QueryValidation:
    """Outcome of validating a search query before running it."""

    is_valid: bool
    keyword_count: int
    required_count: int = 1
    suggestions: list[str] = field(default_factory=list)


class KeywordMatcher:
    """AND-of-all-keywords filter over catalog items."""

    def match(self, items: Iterable[CatalogItem], query: str) -> list[CatalogItem]:
        """Return the items matching every keyword of `query`, in input order."""
        keywords = tokenize(query)
        if not keywords:
            return []
        return [item for item in items if matches_all(item_haystack(item), keywords)]

    def validate(self, query: str) -> QueryValidation:
        count = len(tokenize(query))
        return QueryValidation(
            is_valid=count > 0,
            keyword_count=count,
            suggestions=self.suggestions(),
        )

    def suggestions(self) -> list[str]:
        """Keyword combinations worth trying on this kind of catalog."""
        return list(SUGGESTIONS)
