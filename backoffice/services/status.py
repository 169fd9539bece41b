"""Publication status fields shared by CDs, DVDs, messages and photos.

Documents of these collections carry ``status`` (``draft``/``published``),
``publishedAt`` and the legacy ``published_at`` timestamp. The helpers keep
the three consistent whenever a document is written.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .documents import DocumentRepository, Query
from .naming import format_timestamp

LOGGER = logging.getLogger(__name__)

STATUS_VALUES = ("draft", "published")
STATUS_COLLECTIONS = ("cds", "dvds", "messages", "photos")


def apply_status_fields(
    document: Dict[str, Any],
    *,
    previous: Optional[Dict[str, Any]] = None,
    status_field: str = "status",
    published_field: str = "publishedAt",
    legacy_field: str = "published_at",
) -> Dict[str, Any]:
    """Synchronise the status fields of *document* in place and return it.

    When *previous* is given, an explicit change of the legacy timestamp (as
    done by the publish toggle) wins over the stale ``publishedAt`` value.
    """

    if previous is not None and legacy_field in document:
        legacy_changed = document.get(legacy_field) != previous.get(legacy_field)
        modern_changed = document.get(published_field) != previous.get(published_field)
        if legacy_changed and not modern_changed:
            document[published_field] = document.get(legacy_field)
            if document.get(status_field) == previous.get(status_field):
                document[status_field] = "published" if document[legacy_field] else "draft"

    published_at = document.get(published_field) or document.get(legacy_field)
    status = document.get(status_field)
    if status not in STATUS_VALUES:
        status = "published" if published_at else "draft"
        document[status_field] = status

    if status == "published" and not published_at:
        published_at = format_timestamp()

    document[published_field] = published_at or None
    document[legacy_field] = published_at or None
    return document


def sync_collection_status(repository: DocumentRepository, collection: str) -> int:
    """Mark every document carrying a publication date as ``published``.

    Returns the number of rewritten documents.
    """

    fixed = 0
    for document in repository.find(collection):
        expected = dict(document)
        if expected.get("published_at") or expected.get("publishedAt"):
            expected["status"] = "published"
        apply_status_fields(expected)
        if (
            expected.get("status") != document.get("status")
            or expected.get("publishedAt") != document.get("publishedAt")
            or expected.get("published_at") != document.get("published_at")
        ):
            repository.replace(collection, expected, touch=False)
            fixed += 1
    LOGGER.info("Synchronised status fields of %s %s document(s)", fixed, collection)
    return fixed


def published_query(field: str = "published_at") -> Query:
    return Query().not_null(field)


__all__ = [
    "STATUS_COLLECTIONS",
    "STATUS_VALUES",
    "apply_status_fields",
    "published_query",
    "sync_collection_status",
]
