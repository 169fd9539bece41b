"""Response shaping helpers shared by every list and detail endpoint.

The admin front-end consumes two list formats: a bare JSON array (legacy) and
an envelope ``{"data": [...], "pagination": {...}}``. The helpers here parse
the query parameters of both dialects and normalise stored documents into the
JSON the clients expect.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from bson import ObjectId

from .documents import Query
from .naming import format_timestamp, is_object_id

__all__ = [
    "LegacyPagination",
    "build_paginated_response",
    "build_regex_filter",
    "ensure_https_url",
    "escape_regexp",
    "extract_track_document",
    "normalize_document",
    "normalize_file_id_list",
    "normalize_lyric",
    "normalize_track_list",
    "normalize_upload_file",
    "normalize_upload_file_list",
    "parse_legacy_pagination",
    "resolve_list_response",
    "resolve_object_id_string",
    "resolve_status_filter",
    "with_published_flag",
]


_REGEXP_SPECIALS = re.compile(r"[.*+?^${}()|\[\]\\]")
_PAGINATION_PARAMS = ("page", "pageSize", "page_size")


def _convert(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_convert(item) for item in value]
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Mapping):
        result = {key: _convert(nested) for key, nested in value.items()}
        identifier = result.get("_id") if isinstance(result.get("_id"), str) else None
        if identifier is None and isinstance(result.get("id"), str):
            identifier = result["id"]
        if identifier:
            result["_id"] = identifier
            result["id"] = identifier
        return result
    return value


def normalize_document(document: Any) -> Any:
    """Return a JSON-ready deep copy of *document* with ``_id``/``id`` mirrored."""

    if document is None:
        return None
    return _convert(document)


def ensure_https_url(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value.startswith(("blob:", "data:")):
        return value
    if value.startswith("//"):
        return f"https:{value}"
    if value.startswith("http://"):
        return "https://" + value[len("http://"):]
    return value


def normalize_upload_file(upload: Any) -> Any:
    """Normalise an upload record and force https on every URL it carries."""

    normalized = normalize_document(upload)
    if not isinstance(normalized, dict):
        return normalized

    for key in ("url", "previewUrl"):
        if isinstance(normalized.get(key), str):
            normalized[key] = ensure_https_url(normalized[key])

    formats = normalized.get("formats")
    if isinstance(formats, dict):
        for name in list(formats):
            entry = formats[name]
            if not isinstance(entry, dict):
                del formats[name]
                continue
            if isinstance(entry.get("url"), str):
                entry["url"] = ensure_https_url(entry["url"])
    return normalized


def normalize_upload_file_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    normalized = (normalize_upload_file(entry) for entry in value)
    return [entry for entry in normalized if isinstance(entry, dict)]


def escape_regexp(value: str) -> str:
    return _REGEXP_SPECIALS.sub(lambda match: "\\" + match.group(0), value)


def build_regex_filter(value: str, *, starts_with: bool = False) -> Dict[str, str]:
    """Return the Mongo-style ``$regex`` filter for *value*.

    Queries against the document store use :meth:`Query.contains` and
    :meth:`Query.starts_with` instead.
    """

    escaped = escape_regexp(value.strip())
    return {"$regex": f"^{escaped}" if starts_with else escaped, "$options": "i"}


def normalize_lyric(lyric: Any) -> Any:
    normalized = normalize_document(lyric)
    if isinstance(normalized, dict) and not normalized.get("composer") and normalized.get("composers"):
        normalized["composer"] = normalized["composers"]
    return normalized


def extract_track_document(entry: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if not entry:
        return None
    ref = entry.get("ref")
    if isinstance(ref, Mapping):
        return ref
    return entry


def resolve_object_id_string(value: Any) -> Optional[str]:
    """Return the id string for a plain id, an ObjectId or a mapping carrying one."""

    if value is None:
        return None
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return resolve_object_id_string(value.get("_id") or value.get("id"))
    return None


def normalize_file_id_list(value: Any) -> List[str]:
    """Return the valid, de-duplicated upload ids in *value*, order preserved."""

    if value is None:
        return []
    entries = value if isinstance(value, (list, tuple)) else [value]
    seen: List[str] = []
    for entry in entries:
        identifier = resolve_object_id_string(entry)
        if identifier and is_object_id(identifier) and identifier not in seen:
            seen.append(identifier)
    return seen


def normalize_track_list(
    entries: Iterable[Any],
    lyric_map: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    tracks: List[Dict[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        track_document = extract_track_document(entry)
        if not track_document:
            continue
        normalized = normalize_document(track_document)
        if isinstance(normalized.get("track"), dict):
            normalized["track"] = normalize_upload_file(normalized["track"])
        lyric_id = resolve_object_id_string(track_document.get("lyric"))
        if lyric_id and lyric_map:
            lyric = lyric_map.get(lyric_id)
            if lyric:
                normalized["lyrics"] = normalize_lyric(lyric)
        tracks.append(normalized)
    return tracks


def with_published_flag(document: Optional[Dict[str, Any]], field: str = "published_at") -> Optional[Dict[str, Any]]:
    if not document:
        return document
    return {**document, "published": bool(document.get(field))}


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    match = re.match(r"^\s*([+-]?\d+)", str(value))
    return int(match.group(1)) if match else None


def _first(params: Mapping[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = params.get(name)
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class LegacyPagination:
    start: Optional[int]
    limit: Optional[int]
    page: Optional[int]
    page_size: Optional[int]
    should_paginate: bool


def parse_legacy_pagination(params: Mapping[str, Any]) -> LegacyPagination:
    """Resolve ``_limit``/``_start`` and ``page``/``pageSize`` parameters.

    ``page`` + ``pageSize`` wins over ``page`` + ``limit``; a lone ``pageSize``
    acts as the limit. Only a positive limit turns pagination on.
    """

    parsed_limit = _parse_int(_first(params, "_limit", "limit"))
    parsed_start = _parse_int(_first(params, "_start", "start"))
    parsed_page = _parse_int(params.get("page"))
    parsed_page_size = _parse_int(_first(params, "pageSize", "page_size"))

    limit = max(parsed_limit, 0) if parsed_limit is not None else None
    start = max(parsed_start, 0) if parsed_start is not None else None
    page = max(parsed_page, 1) if parsed_page is not None else None
    page_size = max(parsed_page_size, 0) if parsed_page_size is not None else None

    if page and page_size:
        limit = page_size
        start = (page - 1) * page_size
    elif page and limit:
        page_size = limit
        start = (page - 1) * limit
    elif page_size and not limit:
        limit = page_size

    return LegacyPagination(
        start=start,
        limit=limit,
        page=page,
        page_size=limit if limit is not None else page_size,
        should_paginate=limit is not None and limit > 0,
    )


def resolve_status_filter(
    params: Mapping[str, Any],
    *,
    published_field: str = "published_at",
    default_status: Optional[str] = None,
) -> Optional[Query]:
    """Return the publication filter requested by *params*, or ``None`` for all."""

    raw_status = (params.get("status") or "").strip().lower()
    published_param = params.get("published")

    status: Optional[str] = None
    if raw_status in {"published", "draft", "all"}:
        status = raw_status
    elif published_param == "false":
        status = "draft"
    elif published_param == "true":
        status = "published"

    if status is None:
        if default_status:
            status = default_status
        else:
            has_pagination = any(name in params for name in _PAGINATION_PARAMS)
            status = "all" if has_pagination else "published"

    if status == "all":
        return None
    if status == "draft":
        return Query().is_null(published_field)
    return Query().not_null(published_field)


def build_paginated_response(
    items: Sequence[Any],
    *,
    total: Optional[int] = None,
    limit: Optional[int] = None,
    start: Optional[int] = None,
    page: Optional[int] = None,
) -> Dict[str, Any]:
    effective_limit = limit if limit and limit > 0 else (len(items) or 1)
    total_count = total if isinstance(total, int) else len(items)
    total_pages = max(1, math.ceil(total_count / effective_limit))
    if page and page > 0:
        computed_page = page
    elif isinstance(start, int):
        computed_page = start // effective_limit + 1
    else:
        computed_page = 1
    return {
        "data": list(items),
        "pagination": {
            "page": computed_page,
            "totalPages": total_pages,
            "total": total_count,
            "limit": effective_limit,
        },
    }


def resolve_list_response(
    payload: Union[Sequence[Any], Mapping[str, Any], None],
    page_size: int,
    current_page: int,
) -> Dict[str, Any]:
    """Accept either list shape and return ``{"items", "pagination"}`` fully resolved."""

    if isinstance(payload, (list, tuple)):
        items = list(payload)
        pagination: Mapping[str, Any] = {}
    else:
        payload = payload or {}
        items = list(payload.get("data") or [])
        pagination = payload.get("pagination") or {}

    def _number(key: str) -> Optional[int]:
        value = pagination.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    payload_limit = _number("limit")
    limit = payload_limit if payload_limit and payload_limit > 0 else page_size
    payload_total = _number("total")
    total = payload_total if payload_total is not None else len(items)
    payload_pages = _number("totalPages")
    if payload_pages is None:
        payload_pages = math.ceil(total / limit) if limit > 0 else 1
    payload_page = _number("page")
    if payload_page and payload_page > 0:
        page = payload_page
    else:
        page = current_page if current_page > 0 else 1
    return {
        "items": items,
        "pagination": {
            "page": page,
            "totalPages": max(1, payload_pages),
            "total": total,
            "limit": limit,
        },
    }
