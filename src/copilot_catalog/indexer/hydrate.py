"""
On-demand hydration of catalog items.

The index never fetches file contents; an item only gets its description
and last-modified date when somebody asks for its details. Hydration
costs up to two remote calls, so it is done one item at a time.
"""

import json
import re
from dataclasses import replace
from datetime import datetime
from typing import Protocol

import structlog
import yaml

from ..remote.errors import CatalogError
from .models import CatalogItem

logger = structlog.get_logger()

DESCRIPTION_MAX_CHARS = 100

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)$", re.DOTALL)
_HEADING_MARKS = re.compile(r"^#+\s*")


class ContentSource(Protocol):
    def fetch_content(self, url: str) -> bytes: ...

    def fetch_last_revision_date(self, path: str) -> datetime | None: ...


def extract_description(text: str) -> str | None:
    """Best description found in a file's text, or None.

    Order:
    1. `description` (or `name`) of a JSON object document
    2. `description` from YAML frontmatter
    3. first heading or non-empty line of the body, without '#' marks
    """
    stripped = text.lstrip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except ValueError:
            data = None
        if isinstance(data, dict):
            value = data.get("description") or data.get("name")
            return str(value)[:DESCRIPTION_MAX_CHARS] if value else None

    body = text
    match = _FRONTMATTER.match(text)
    if match:
        try:
            meta = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError:
            meta = {}
        if isinstance(meta, dict) and meta.get("description"):
            return str(meta["description"]).strip()[:DESCRIPTION_MAX_CHARS]
        body = match.group(2)

    for line in body.splitlines():
        line = line.strip()
        if not line or line.startswith("---"):
            continue
        line = _HEADING_MARKS.sub("", line)
        if line:
            return line[:DESCRIPTION_MAX_CHARS]
    return None


class ItemHydrator:
    """Fills in description and last-modified for single items."""

    def __init__(self, client: ContentSource) -> None:
        self.client = client
        self.log = logger.bind(component="hydrator")

    def hydrate(self, item: CatalogItem) -> CatalogItem:
        """Return a copy of `item` with description and last_modified set.

        Never raises for remote failures: the description falls back to the
        category default and last_modified stays as it was.
        """
        description = item.category.default_description
        try:
            text = self.client.fetch_content(item.content_url).decode("utf-8", errors="replace")
            description = extract_description(text) or description
        except CatalogError as e:
            self.log.warning("hydrate.content_failed", path=item.path, error=str(e))

        last_modified = self.client.fetch_last_revision_date(item.path) or item.last_modified

        self.log.debug("hydrate.done", path=item.path)
        return replace(item, description=description, last_modified=last_modified)

    def fetch_text(self, item: CatalogItem) -> str:
        """Full content of the item's file.

        Raises:
            CatalogError: If the content cannot be fetched.
        """
        return self.client.fetch_content(item.content_url).decode("utf-8", errors="replace")
