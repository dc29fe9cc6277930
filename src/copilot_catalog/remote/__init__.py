"""
Remote module -- rate-aware access to the content repository API.
"""

from .client import EntryKind, RemoteClient, RemoteTreeEntry, TreeListing
from .errors import (
    CatalogError,
    MalformedRemoteResponse,
    NoCacheAvailable,
    QuotaExhausted,
    RemoteUnavailable,
)
from .rate_gate import RateBudget, RateGate

__all__ = [
    "CatalogError",
    "EntryKind",
    "MalformedRemoteResponse",
    "NoCacheAvailable",
    "QuotaExhausted",
    "RateBudget",
    "RateGate",
    "RemoteClient",
    "RemoteTreeEntry",
    "RemoteUnavailable",
    "TreeListing",
]
