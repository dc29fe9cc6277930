"""
Catalog data model.

CatalogItem instances are immutable: hydration, refreshes and merges
always produce new instances (dataclasses.replace), never edit a shared
one in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Category(Enum):
    """Content kinds, each living under a fixed prefix with a fixed suffix."""

    INSTRUCTION = "instruction"
    PROMPT = "prompt"
    CHATMODE = "chatmode"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]

    @property
    def default_description(self) -> str:
        return _DEFAULT_DESCRIPTIONS[self]


_PREFIXES = {
    Category.INSTRUCTION: "instructions/",
    Category.PROMPT: "prompts/",
    Category.CHATMODE: "chatmodes/",
}

_SUFFIXES = {
    Category.INSTRUCTION: ".instructions.md",
    Category.PROMPT: ".prompt.md",
    Category.CHATMODE: ".chatmode.md",
}

_DEFAULT_DESCRIPTIONS = {
    Category.INSTRUCTION: "Custom instruction",
    Category.PROMPT: "Custom prompt",
    Category.CHATMODE: "Custom chat mode",
}


@dataclass(frozen=True)
class CatalogItem:
    """One indexed file of the content repository.

    As produced by the index, `description` is empty and `last_modified`
    is None; ItemHydrator fills them in on demand.
    """

    id: str
    category: Category
    title: str
    path: str
    content_url: str
    last_modified: datetime | None = None
    description: str = ""
    revision: str = ""

    @property
    def hydrated(self) -> bool:
        return bool(self.description)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "title": self.title,
            "path": self.path,
            "content_url": self.content_url,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "description": self.description,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogItem":
        last_modified = data.get("last_modified")
        return cls(
            id=data["id"],
            category=Category(data["category"]),
            title=data["title"],
            path=data["path"],
            content_url=data["content_url"],
            last_modified=datetime.fromisoformat(last_modified) if last_modified else None,
            description=data.get("description", ""),
            revision=data.get("revision", ""),
        )


@dataclass(frozen=True)
class CatalogSnapshot:
    """A complete persisted catalog.

    Attributes:
        items: Items keyed by path (paths are unique, ids may repeat).
        built_at: Epoch seconds of the write that produced this snapshot.
        validators: Per-resource tokens for conditional fetches.
    """

    items: dict[str, CatalogItem]
    built_at: float
    validators: dict[str, str] = field(default_factory=dict)

    def item_list(self) -> list[CatalogItem]:
        return list(self.items.values())

    def age(self, now: float) -> float:
        return max(0.0, now - self.built_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items.values()],
            "built_at": self.built_at,
            "validators": dict(self.validators),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogSnapshot":
        items = [CatalogItem.from_dict(raw) for raw in data["items"]]
        return cls(
            items={item.path: item for item in items},
            built_at=float(data["built_at"]),
            validators={str(k): str(v) for k, v in data.get("validators", {}).items()},
        )
