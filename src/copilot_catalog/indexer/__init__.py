"""
Indexer module -- catalog building, persistence and search.

Turns the remote repository tree into a small, cached catalog of
instructions, prompts and chat modes.
"""

from .cache import CacheStore
from .engine import EngineState, IndexEngine, IndexResult
from .hydrate import ItemHydrator
from .mapper import CatalogMapper
from .matcher import KeywordMatcher, QueryValidation
from .models import CatalogItem, CatalogSnapshot, Category

__all__ = [
    "CacheStore",
    "CatalogItem",
    "CatalogMapper",
    "CatalogSnapshot",
    "Category",
    "EngineState",
    "IndexEngine",
    "IndexResult",
    "ItemHydrator",
    "KeywordMatcher",
    "QueryValidation",
]
