"""
Catalog mapper -- turns raw tree entries into catalog items.

Pure transformation, no I/O:
- Keeps only files under a category prefix whose basename ends in that
  category's suffix (instructions/*.instructions.md, prompts/*.prompt.md,
  chatmodes/*.chatmode.md).
- Derives id, title and content URL from the path.
- Truncates the result to max_items in listing order. This bounds API
  usage downstream; it is a policy, not an attempt at completeness.

Description and last-modified are left empty here; fetching them would
cost one request per item, so they are hydrated on demand instead.
"""

import re
from collections.abc import Callable, Iterable, Iterator

from ..remote.client import EntryKind, RemoteTreeEntry
from .models import CatalogItem, Category

DEFAULT_RAW_BASE = "https://raw.githubusercontent.com"

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")
_WORD_START = re.compile(r"\b\w")
_SEPARATORS = re.compile(r"[-_]")

# Optional candidate filter: (path, category) -> keep?
KeepPredicate = Callable[[str, Category], bool]


def slugify(text: str) -> str:
    """Lowercase and collapse every non-alphanumeric run into one hyphen.

    >>> slugify("My Cool Thing")
    'my-cool-thing'
    >>> slugify("my-cool-thing")
    'my-cool-thing'
    """
    return _NON_ALNUM_RUN.sub("-", text.lower()).strip("-")


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def classify(path: str) -> Category | None:
    """Return the category of a path, or None if it is not catalog content."""
    name = basename(path)
    for category in Category:
        if path.startswith(category.prefix) and name.endswith(category.suffix):
            return category
    return None


def strip_suffix(name: str, category: Category) -> str:
    return name[: -len(category.suffix)] if name.endswith(category.suffix) else name


def make_title(name: str, category: Category) -> str:
    """'azure-functions_typescript.instructions.md' -> 'Azure Functions Typescript'."""
    stem = _SEPARATORS.sub(" ", strip_suffix(name, category))
    return _WORD_START.sub(lambda m: m.group().upper(), stem)


def make_id(name: str, category: Category) -> str:
    return f"{category.value}-{slugify(strip_suffix(name, category))}"


class CatalogMapper:
    """Maps tree listing entries to catalog items for one repo/branch."""

    def __init__(
        self,
        repo: str,
        branch: str,
        max_items: int = 10,
        raw_base: str = DEFAULT_RAW_BASE,
    ) -> None:
        """Initialize the mapper.

        Args:
            repo: Repository in 'owner/name' form (used for content URLs)
            branch: Branch name (used for content URLs)
            max_items: Default cap on the number of items per map() call
            raw_base: Host serving raw file content
        """
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.repo = repo
        self.branch = branch
        self.max_items = max_items
        self.raw_base = raw_base.rstrip("/")

    def content_url(self, path: str) -> str:
        return f"{self.raw_base}/{self.repo}/{self.branch}/{path}"

    def candidates(
        self,
        entries: Iterable[RemoteTreeEntry],
        keep: KeepPredicate | None = None,
    ) -> Iterator[tuple[RemoteTreeEntry, Category]]:
        """Yield qualifying entries with their category, in listing order."""
        for entry in entries:
            if entry.kind is not EntryKind.FILE:
                continue
            category = classify(entry.path)
            if category is None:
                continue
            if keep is not None and not keep(entry.path, category):
                continue
            yield entry, category

    def to_item(self, entry: RemoteTreeEntry, category: Category) -> CatalogItem:
        name = basename(entry.path)
        return CatalogItem(
            id=make_id(name, category),
            category=category,
            title=make_title(name, category),
            path=entry.path,
            content_url=self.content_url(entry.path),
            revision=entry.revision,
        )

    def map(
        self,
        entries: Iterable[RemoteTreeEntry],
        keep: KeepPredicate | None = None,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        """Filter and map entries, keeping at most `limit` (default max_items).

        Args:
            entries: Raw tree entries, in listing order
            keep: Optional extra filter applied before truncation
            limit: Overrides max_items for this call

        Returns:
            Catalog items in listing order, truncated deterministically.
        """
        cap = self.max_items if limit is None else max(1, limit)
        items: list[CatalogItem] = []
        for entry, category in self.candidates(entries, keep):
            if len(items) >= cap:
                break
            items.append(self.to_item(entry, category))
        return items
