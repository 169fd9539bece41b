"""Helpers for slugs, document identifiers and timestamps."""

from __future__ import annotations

import re
import secrets
import unicodedata
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId

__all__ = [
    "slugify",
    "new_object_id",
    "is_object_id",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
]


_OBJECT_ID_PATTERN = re.compile(r"^[a-f\d]{24}$", re.IGNORECASE)


def slugify(value: str) -> str:
    """Return a URL-friendly representation of *value*.

    Accents are folded to ASCII and runs of other characters collapse into a
    single ``-``. Titles without any usable character get a short random slug.
    """

    folded = unicodedata.normalize("NFKD", value or "")
    folded = folded.encode("ascii", "ignore").decode("ascii")
    folded = folded.strip().lower()
    folded = re.sub(r"[^a-z0-9]+", "-", folded)
    folded = re.sub(r"-+", "-", folded).strip("-")
    return folded or secrets.token_hex(3)


def new_object_id() -> str:
    return str(ObjectId())


def is_object_id(value: Any) -> bool:
    if isinstance(value, ObjectId):
        return True
    if not isinstance(value, str) or not _OBJECT_ID_PATTERN.match(value):
        return False
    try:
        ObjectId(value)
    except InvalidId:
        return False
    return True


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Return *value* (or now) as an ISO-8601 UTC string with millisecond precision."""

    moment = value or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
