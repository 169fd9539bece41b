"""Persistence rules of the catalog collections.

Each resource of the admin API is served by a :class:`CollectionService`
subclass declaring its collection, the fields holding upload references, the
searchable fields and the filters it understands. CDs and DVDs additionally
own ordered track sub-documents handled by :class:`TrackService`.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .documents import DocumentNotFoundError, DocumentRepository, Query
from .legacy import (
    build_paginated_response,
    normalize_document,
    normalize_file_id_list,
    normalize_track_list,
    normalize_upload_file,
    normalize_upload_file_list,
    parse_legacy_pagination,
    resolve_object_id_string,
    resolve_status_filter,
    with_published_flag,
)
from .naming import format_timestamp, is_object_id, parse_timestamp, slugify, utc_now
from .status import apply_status_fields, published_query
from .uploads import UPLOAD_COLLECTION, UploadStore


LOGGER = logging.getLogger(__name__)

_JSON_SCALARS = (str, int, float, bool, list, dict, type(None))


class InvalidIdentifierError(ValueError):
    """Raised when a path parameter is not a 24-hex document id."""

    def __init__(self, value: Any) -> None:
        super().__init__(f"Invalid id: {value!r}")
        self.value = value


class ResourceNotFoundError(DocumentNotFoundError):
    """A catalog document addressed by the client does not exist."""

    def __init__(self, entity: str, collection: str, document_id: str) -> None:
        super().__init__(collection, document_id)
        self.entity = entity

    def __str__(self) -> str:
        return f"{self.entity} not found"


def _text_param(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    return value.strip() if isinstance(value, str) else ""


def _int_param(
    params: Mapping[str, Any],
    name: str,
    default: int,
    *,
    minimum: int = 1,
    maximum: Optional[int] = None,
) -> int:
    raw = params.get(name)
    match = re.match(r"^\s*([+-]?\d+)", str(raw)) if raw is not None else None
    value = int(match.group(1)) if match else default
    value = max(value, minimum)
    if maximum is not None:
        value = min(value, maximum)
    return value


def _search_query(fields: Sequence[str], text: str) -> Query:
    return Query().any_of(*(Query().contains(name, text) for name in fields))


def _prepare_values(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return *data* with datetimes and URL objects turned into JSON strings."""

    prepared: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = format_timestamp(value)
        elif not isinstance(value, _JSON_SCALARS):
            value = str(value)
        prepared[key] = value
    return prepared


@dataclass(frozen=True)
class SortRule:
    """Sortable fields of a list endpoint and its default ordering."""

    fields: Tuple[str, ...]
    default_field: str = "createdAt"
    default_direction: int = -1
    aliases: Mapping[str, str] = field(default_factory=dict)

    def resolve(self, params: Mapping[str, Any]) -> List[Tuple[str, int]]:
        """Parse ``_sort``/``sort`` (``field``, ``-field`` or ``field:dir``) plus ``order``."""

        raw = _text_param(params, "_sort") or _text_param(params, "sort")
        field_part, _, direction_part = raw.partition(":")
        direction_part = (
            direction_part or _text_param(params, "_order") or _text_param(params, "order")
        ).lower()

        name = field_part.lstrip("-")
        if not name:
            direction = self.default_direction
        else:
            direction = -1 if field_part.startswith("-") else 1
        if direction_part:
            direction = 1 if direction_part == "asc" else -1

        name = self.aliases.get(name, name) or self.default_field
        if name not in self.fields:
            return [(self.default_field, self.default_direction)]
        return [(name, direction)]


def _page_envelope(
    repository: DocumentRepository,
    collection: str,
    query: Query,
    sort: Sequence[Tuple[str, int]],
    params: Mapping[str, Any],
    formatter,
) -> Dict[str, Any]:
    page = _int_param(params, "page", 1)
    limit = _int_param(params, "limit", 20, maximum=100)
    total = repository.count(collection, query)
    documents = repository.find(collection, query, sort=sort, skip=(page - 1) * limit, limit=limit)
    return {
        "data": formatter(documents),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        },
    }


class CollectionService:
    """Create, update, delete and list documents of one catalog collection."""

    collection: str = ""
    entity: str = ""
    slug_source: Optional[str] = "title"
    # (field name, holds a list of ids)
    file_fields: Tuple[Tuple[str, bool], ...] = ()
    search_fields: Tuple[str, ...] = ()
    sort_rule: SortRule = SortRule(("createdAt", "updatedAt", "title"))
    status_fields: bool = False
    published_only: bool = False
    envelope: bool = True
    delete_reason: str = "manual"
    public_list: bool = True
    public_detail: bool = False

    def __init__(self, repository: DocumentRepository, uploads: UploadStore) -> None:
        self._repository = repository
        self._uploads = uploads

    @property
    def repository(self) -> DocumentRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def find(self, identifier: Optional[str], *, allow_slug: bool = False) -> Optional[Dict[str, Any]]:
        """Return the document addressed by id (or slug) or ``None``."""

        if not identifier:
            return None
        if is_object_id(identifier):
            document = self._repository.get(self.collection, identifier)
            if document is not None:
                return document
        if allow_slug and self.slug_source:
            return self._repository.find_one(self.collection, Query().equals("slug", identifier))
        return None

    def require(self, document_id: Optional[str]) -> Dict[str, Any]:
        if not is_object_id(document_id):
            raise InvalidIdentifierError(document_id)
        document = self._repository.get(self.collection, document_id)
        if document is None:
            raise ResourceNotFoundError(self.entity, self.collection, str(document_id))
        return document

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _unique_slug(self, source_value: Any, exclude_id: Optional[str] = None) -> str:
        base = slugify(str(source_value or ""))
        candidate = base
        suffix = 1
        while True:
            query = Query().equals("slug", candidate)
            if exclude_id:
                query = query.not_equals("_id", exclude_id)
            if not self._repository.exists(self.collection, query):
                return candidate
            candidate = f"{base}-{suffix}"
            suffix += 1

    @staticmethod
    def _file_ids(value: Any, multiple: bool) -> List[str]:
        if multiple:
            return normalize_file_id_list(value)
        identifier = resolve_object_id_string(value)
        return [identifier] if identifier and is_object_id(identifier) else []

    def _normalize_file_fields(self, document: Dict[str, Any], names: Iterable[str]) -> None:
        for name, multiple in self.file_fields:
            if name not in names:
                continue
            ids = self._file_ids(document.get(name), multiple)
            document[name] = ids if multiple else (ids[0] if ids else None)

    def _prepare(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return _prepare_values(data)

    def _before_insert(self, document: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
        return document

    def _before_replace(
        self,
        current: Dict[str, Any],
        updated: Dict[str, Any],
        changes: Mapping[str, Any],
        user_id: Optional[str],
    ) -> Dict[str, Any]:
        return updated

    def _before_delete(self, current: Dict[str, Any], user_id: Optional[str]) -> None:
        return None

    def create(self, data: Mapping[str, Any], *, user_id: Optional[str] = None) -> Dict[str, Any]:
        document = self._prepare(data)
        document["created_by"] = user_id
        document["updated_by"] = user_id
        if self.slug_source:
            document["slug"] = self._unique_slug(document.get(self.slug_source))
        self._normalize_file_fields(document, [name for name, _ in self.file_fields])
        if self.status_fields:
            apply_status_fields(document)
        document = self._before_insert(document, user_id)

        stored = self._repository.insert(self.collection, document)
        for name, multiple in self.file_fields:
            for file_id in self._file_ids(stored.get(name), multiple):
                self._uploads.attach_file(file_id, stored["_id"], self.entity, name)
        LOGGER.info("Created %s %s", self.entity, stored["_id"])
        return stored

    def _reconcile_file_field(
        self,
        current: Mapping[str, Any],
        updated: Dict[str, Any],
        name: str,
        multiple: bool,
        user_id: Optional[str],
    ) -> None:
        owner_id = current["_id"]
        reason = "cover_replaced" if name == "cover" else "manual"
        previous = self._file_ids(current.get(name), multiple)
        incoming = self._file_ids(updated.get(name), multiple)

        if multiple:
            updated[name] = incoming
            for file_id in incoming:
                if file_id not in previous:
                    self._uploads.attach_file(file_id, owner_id, self.entity, name)
            for file_id in previous:
                if file_id not in incoming:
                    self._uploads.release(
                        file_id, owner_id=owner_id, kind=self.entity, reason=reason, user_id=user_id
                    )
            return

        new_id = incoming[0] if incoming else None
        old_id = previous[0] if previous else None
        updated[name] = new_id
        if new_id == old_id:
            return
        if new_id:
            self._uploads.replace_reference(
                old_id,
                new_id,
                owner_id=owner_id,
                kind=self.entity,
                field=name,
                reason=reason,
                user_id=user_id,
            )
        else:
            self._uploads.release(
                old_id, owner_id=owner_id, kind=self.entity, reason=reason, user_id=user_id
            )

    def update(
        self,
        document_id: str,
        changes: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply the partial *changes* to the document and return the stored result."""

        current = self.require(document_id)
        changes = self._prepare(changes)
        updated = {**current, **changes, "updated_by": user_id}

        if self.slug_source:
            source_changed = (
                self.slug_source in changes
                and changes[self.slug_source] != current.get(self.slug_source)
            )
            if source_changed or not current.get("slug"):
                updated["slug"] = self._unique_slug(updated.get(self.slug_source), current["_id"])

        for name, multiple in self.file_fields:
            if name in changes:
                self._reconcile_file_field(current, updated, name, multiple, user_id)
        if self.status_fields:
            apply_status_fields(updated, previous=current)
        updated = self._before_replace(current, updated, changes, user_id)

        stored = self._repository.replace(self.collection, updated)
        LOGGER.info("Updated %s %s", self.entity, document_id)
        return stored

    def delete(self, document_id: str, *, user_id: Optional[str] = None) -> Dict[str, Any]:
        current = self.require(document_id)
        self._before_delete(current, user_id)
        self._repository.delete(self.collection, current["_id"])
        for name, multiple in self.file_fields:
            for file_id in self._file_ids(current.get(name), multiple):
                self._uploads.release(
                    file_id,
                    owner_id=current["_id"],
                    kind=self.entity,
                    reason=self.delete_reason,
                    user_id=user_id,
                )
        LOGGER.info("Deleted %s %s", self.entity, document_id)
        return current

    def toggle_publish(self, document_id: str, *, user_id: Optional[str] = None) -> Optional[str]:
        """Flip ``published_at`` between ``None`` and now; return the new value."""

        current = self.require(document_id)
        published_at = None if current.get("published_at") else format_timestamp()
        updated = {**current, "published_at": published_at, "updated_by": user_id}
        if self.status_fields:
            apply_status_fields(updated, previous=current)
        self._repository.replace(self.collection, updated)
        LOGGER.info(
            "%s %s %s", "Published" if published_at else "Unpublished", self.entity, document_id
        )
        return published_at

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------
    def _load_files(self, documents: Sequence[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
        ids: List[str] = []
        for document in documents:
            for name, multiple in self.file_fields:
                ids.extend(self._file_ids(document.get(name), multiple))
        return {record["_id"]: record for record in self._repository.get_many(UPLOAD_COLLECTION, ids)}

    def _format(self, document: Mapping[str, Any], files: Mapping[str, Dict[str, Any]]) -> Dict[str, Any]:
        formatted = normalize_document(document)
        for name, multiple in self.file_fields:
            ids = self._file_ids(document.get(name), multiple)
            if multiple:
                formatted[name] = normalize_upload_file_list([files[i] for i in ids if i in files])
            else:
                formatted[name] = normalize_upload_file(files.get(ids[0])) if ids else None
        return with_published_flag(formatted)

    def format_many(self, documents: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        files = self._load_files(documents)
        return [self._format(document, files) for document in documents]

    def format(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        return self.format_many([document])[0]

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def filter_query(self, query: Query, params: Mapping[str, Any]) -> Query:
        return query

    def list_query(self, params: Mapping[str, Any], *, paginate: bool) -> Query:
        if self.published_only:
            query = published_query()
        else:
            query = resolve_status_filter(
                params, default_status="all" if paginate else None
            ) or Query()
        search = _text_param(params, "search")
        if search and self.search_fields:
            query = query.any_of(_search_query(self.search_fields, search))
        return self.filter_query(query, params)

    def list(self, params: Mapping[str, Any]) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
        """Answer a legacy list request: a bare array, or an envelope when paginated."""

        pagination = parse_legacy_pagination(params)
        paginate = pagination.should_paginate
        query = self.list_query(params, paginate=paginate)
        documents = self._repository.find(
            self.collection,
            query,
            sort=self.sort_rule.resolve(params),
            skip=pagination.start or 0,
            limit=pagination.limit if paginate else None,
        )
        items = self.format_many(documents)
        if not (paginate and self.envelope):
            return items
        return build_paginated_response(
            items,
            total=self._repository.count(self.collection, query),
            limit=pagination.limit,
            start=pagination.start,
            page=pagination.page,
        )


class TrackService:
    """Standalone access to CD or DVD track sub-documents."""

    def __init__(
        self,
        repository: DocumentRepository,
        uploads: UploadStore,
        *,
        collection: str,
        entity: str,
        parent_collection: str,
        fields: Sequence[str],
    ) -> None:
        self._repository = repository
        self._uploads = uploads
        self.collection = collection
        self.entity = entity
        self.parent_collection = parent_collection
        self.fields = tuple(fields)

    def _payload(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {key: data[key] for key in self.fields if key in data}
        if "track" in payload:
            audio_id = resolve_object_id_string(payload["track"])
            payload["track"] = audio_id if audio_id and is_object_id(audio_id) else None
        if "lyric" in payload and isinstance(payload["lyric"], Mapping):
            payload["lyric"] = resolve_object_id_string(payload["lyric"])
        return _prepare_values(payload)

    def require(self, track_id: Optional[str]) -> Dict[str, Any]:
        if not is_object_id(track_id):
            raise InvalidIdentifierError(track_id)
        track = self._repository.get(self.collection, track_id)
        if track is None:
            raise ResourceNotFoundError(self.entity, self.collection, str(track_id))
        return track

    def list(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        limit = _int_param(params, "limit", 50, maximum=200)
        search = _text_param(params, "search")
        query = _search_query(("name", "composers"), search) if search else Query()
        tracks = self._repository.find(self.collection, query, sort=[("name", 1)], limit=limit)
        return [normalize_document(track) for track in tracks]

    def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        track = self._repository.insert(self.collection, self._payload(data))
        self._uploads.attach_file(track.get("track"), track["_id"], self.entity, "track")
        LOGGER.debug("Created %s %s", self.entity, track["_id"])
        return track

    def apply(
        self,
        current: Dict[str, Any],
        data: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        changes = self._payload(data)
        updated = {**current, **changes}
        if "track" in changes and changes["track"] != current.get("track"):
            if changes["track"]:
                self._uploads.replace_reference(
                    current.get("track"),
                    changes["track"],
                    owner_id=current["_id"],
                    kind=self.entity,
                    field="track",
                    reason="manual",
                    user_id=user_id,
                )
            else:
                self._uploads.release(
                    current.get("track"),
                    owner_id=current["_id"],
                    kind=self.entity,
                    reason="manual",
                    user_id=user_id,
                )
        return self._repository.replace(self.collection, updated)

    def update(self, track_id: str, data: Mapping[str, Any], *, user_id: Optional[str] = None) -> Dict[str, Any]:
        return self.apply(self.require(track_id), data, user_id=user_id)

    def discard(self, track: Mapping[str, Any], *, user_id: Optional[str] = None) -> None:
        """Delete *track* and release its audio file."""

        self._repository.delete(self.collection, track["_id"])
        self._uploads.release(
            track.get("track"),
            owner_id=track["_id"],
            kind=self.entity,
            reason="track_deleted",
            user_id=user_id,
        )

    def delete(self, track_id: str, *, user_id: Optional[str] = None) -> Dict[str, Any]:
        track = self.require(track_id)
        self.discard(track, user_id=user_id)
        for parent in self._repository.find(
            self.parent_collection, Query().contains("track", track["_id"])
        ):
            remaining = [
                entry for entry in parent.get("track") or []
                if resolve_object_id_string(entry.get("ref") if isinstance(entry, Mapping) else entry)
                != track["_id"]
            ]
            if len(remaining) != len(parent.get("track") or []):
                self._repository.update(self.parent_collection, parent["_id"], {"track": remaining})
        LOGGER.info("Deleted %s %s", self.entity, track_id)
        return track


class TrackedCollectionService(CollectionService):
    """A collection whose documents own an ordered list of track sub-documents."""

    status_fields = True
    file_fields = (("cover", False),)
    search_fields = ("title", "company", "info")
    sort_rule = SortRule(
        ("createdAt", "updatedAt", "title", "release_date", "company", "published_at")
    )
    track_collection: str = ""
    track_entity: str = ""
    track_kind: str = ""
    track_fields: Tuple[str, ...] = ()

    def __init__(self, repository: DocumentRepository, uploads: UploadStore) -> None:
        super().__init__(repository, uploads)
        self.tracks = TrackService(
            repository,
            uploads,
            collection=self.track_collection,
            entity=self.track_entity,
            parent_collection=self.collection,
            fields=self.track_fields,
        )

    @staticmethod
    def track_ids(document: Mapping[str, Any]) -> List[str]:
        """Return the track ids of *document* in stored order (wrappers or plain ids)."""

        ids: List[str] = []
        for entry in document.get("track") or []:
            ref = entry.get("ref") if isinstance(entry, Mapping) else entry
            identifier = resolve_object_id_string(ref)
            if identifier and identifier not in ids:
                ids.append(identifier)
        return ids

    def _wrap(self, track_ids: Iterable[str]) -> List[Dict[str, str]]:
        return [{"ref": track_id, "kind": self.track_kind} for track_id in track_ids]

    def filter_query(self, query: Query, params: Mapping[str, Any]) -> Query:
        company = _text_param(params, "company")
        if company:
            query = query.contains("company", company)
        year = _text_param(params, "year")
        if year:
            query = query.starts_with("release_date", year)
        return query

    def reconcile_tracks(
        self,
        current_ids: Sequence[str],
        entries: Iterable[Any],
        *,
        user_id: Optional[str] = None,
    ) -> List[str]:
        """Update, create and delete tracks so the result matches *entries*.

        Entries carrying the id of an existing track update it in place; other
        entries become new tracks. Tracks absent from *entries* are deleted.
        Returns the new ordered list of track ids.
        """

        existing = {
            track["_id"]: track
            for track in self._repository.get_many(self.track_collection, current_ids)
        }
        ordered: List[str] = []
        for entry in entries:
            if isinstance(entry, str):
                if entry in existing and entry not in ordered:
                    ordered.append(entry)
                continue
            if not isinstance(entry, Mapping):
                continue
            identifier = resolve_object_id_string(entry.get("_id") or entry.get("id"))
            if identifier in existing and identifier not in ordered:
                self.tracks.apply(existing[identifier], entry, user_id=user_id)
                ordered.append(identifier)
            else:
                ordered.append(self.tracks.create(entry)["_id"])

        for track_id, track in existing.items():
            if track_id not in ordered:
                self.tracks.discard(track, user_id=user_id)
        return ordered

    def _before_insert(self, document: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
        entries = document.pop("tracks", None) or []
        created = [self.tracks.create(entry)["_id"] for entry in entries if isinstance(entry, Mapping)]
        document["track"] = self._wrap(created)
        return document

    def _before_replace(
        self,
        current: Dict[str, Any],
        updated: Dict[str, Any],
        changes: Mapping[str, Any],
        user_id: Optional[str],
    ) -> Dict[str, Any]:
        updated.pop("tracks", None)
        if "tracks" in changes:
            ordered = self.reconcile_tracks(
                self.track_ids(current), changes.get("tracks") or [], user_id=user_id
            )
            updated["track"] = self._wrap(ordered)
        else:
            updated["track"] = current.get("track") or []
        return updated

    def _before_delete(self, current: Dict[str, Any], user_id: Optional[str]) -> None:
        for track in self._repository.get_many(self.track_collection, self.track_ids(current)):
            self.tracks.discard(track, user_id=user_id)

    # ------------------------------------------------------------------
    # Track sub-resources
    # ------------------------------------------------------------------
    def add_track(self, document_id: str, data: Mapping[str, Any], *, user_id: Optional[str] = None) -> Dict[str, Any]:
        current = self.require(document_id)
        track = self.tracks.create(data)
        ids = self.track_ids(current) + [track["_id"]]
        self._repository.update(
            self.collection, current["_id"], {"track": self._wrap(ids), "updated_by": user_id}
        )
        return track

    def remove_track(self, document_id: str, track_id: str, *, user_id: Optional[str] = None) -> None:
        current = self.require(document_id)
        if not is_object_id(track_id):
            raise InvalidIdentifierError(track_id)
        owned = self.track_ids(current)
        if track_id not in owned:
            raise ResourceNotFoundError(self.track_entity, self.track_collection, track_id)
        ids = [identifier for identifier in owned if identifier != track_id]
        self._repository.update(
            self.collection, current["_id"], {"track": self._wrap(ids), "updated_by": user_id}
        )
        track = self._repository.get(self.track_collection, track_id)
        if track is not None:
            self.tracks.discard(track, user_id=user_id)

    def reorder_tracks(
        self,
        document_id: str,
        order: Iterable[Any],
        *,
        user_id: Optional[str] = None,
    ) -> List[str]:
        """Store the tracks in the requested *order* and return the applied id list.

        Ids the document does not own are ignored; owned tracks missing from
        *order* keep their relative order after the requested ones.
        """

        current = self.require(document_id)
        known = self.track_ids(current)
        ordered: List[str] = []
        for entry in order:
            identifier = resolve_object_id_string(entry)
            if identifier in known and identifier not in ordered:
                ordered.append(identifier)
        ordered.extend(identifier for identifier in known if identifier not in ordered)
        self._repository.update(
            self.collection, current["_id"], {"track": self._wrap(ordered), "updated_by": user_id}
        )
        return ordered

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------
    def format_many(self, documents: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        files = self._load_files(documents)
        all_ids: List[str] = []
        for document in documents:
            all_ids.extend(self.track_ids(document))
        tracks = {
            track["_id"]: track
            for track in self._repository.get_many(self.track_collection, all_ids)
        }
        audio = {
            record["_id"]: record
            for record in self._repository.get_many(
                UPLOAD_COLLECTION, [track.get("track") for track in tracks.values()]
            )
        }
        lyric_ids = [
            track.get("lyric") for track in tracks.values() if is_object_id(track.get("lyric"))
        ]
        lyrics = {lyric["_id"]: lyric for lyric in self._repository.get_many("lyrics", lyric_ids)}

        formatted: List[Dict[str, Any]] = []
        for document in documents:
            entries = []
            for track_id in self.track_ids(document):
                track = tracks.get(track_id)
                if track is None:
                    continue
                hydrated = {**track, "track": audio.get(track.get("track"))}
                entries.append({"ref": hydrated, "kind": self.track_kind})
            item = self._format(document, files)
            item["track"] = normalize_track_list(entries, lyrics)
            formatted.append(item)
        return formatted


class BookService(CollectionService):
    collection = "books"
    entity = "Book"
    file_fields = (("cover", False),)
    search_fields = ("title", "author", "ISBN")

    def filter_query(self, query: Query, params: Mapping[str, Any]) -> Query:
        year = _text_param(params, "year")
        if year:
            query = query.starts_with("release_date", year)
        publisher = _text_param(params, "publisher")
        if publisher:
            query = query.contains("publishing_company", publisher)
        return query


class CdService(TrackedCollectionService):
    collection = "cds"
    entity = "Cd"
    public_detail = True
    delete_reason = "cd_deleted"
    track_collection = "cd_tracks"
    track_entity = "CdTrack"
    track_kind = "ComponentCdTrack"
    track_fields = ("name", "publishing_company", "composers", "time", "track", "lyric", "data_sheet")


class DvdService(TrackedCollectionService):
    collection = "dvds"
    entity = "Dvd"
    delete_reason = "dvd_deleted"
    track_collection = "dvd_tracks"
    track_entity = "DvdTrack"
    track_kind = "ComponentDvdTrack"
    track_fields = ("name", "composers", "label", "time", "publishing_company", "lyric", "track")


class ClipService(CollectionService):
    collection = "clips"
    entity = "Clip"
    public_detail = True
    file_fields = (("cover", True),)
    search_fields = ("title", "info")
    published_only = True
    envelope = False


class LyricService(CollectionService):
    collection = "lyrics"
    entity = "Lyric"
    public_list = False
    search_fields = ("title", "composers", "album", "year")
    sort_rule = SortRule(("createdAt", "updatedAt", "title", "year"))

    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        query = Query()
        search = _text_param(params, "search")
        if search:
            query = query.any_of(_search_query(self.search_fields, search))
        published = params.get("published")
        if published == "true":
            query = query.not_null("published_at")
        elif published == "false":
            query = query.is_null("published_at")
        return _page_envelope(
            self._repository, self.collection, query, self.sort_rule.resolve(params), params, self.format_many
        )


class MessageService(CollectionService):
    collection = "messages"
    entity = "Message"
    public_detail = True
    slug_source = None
    status_fields = True
    search_fields = ("name", "email", "city", "state", "message", "response")
    sort_rule = SortRule(
        ("createdAt", "updatedAt", "name", "message"),
        aliases={
            "created_at": "createdAt",
            "updated_at": "updatedAt",
            "title": "name",
            "content": "message",
        },
    )

    def filter_query(self, query: Query, params: Mapping[str, Any]) -> Query:
        city = _text_param(params, "city")
        if city:
            query = query.contains("city", city)
        return query

    def _format(self, document: Mapping[str, Any], files: Mapping[str, Dict[str, Any]]) -> Dict[str, Any]:
        formatted = super()._format(document, files)
        formatted["response"] = formatted.get("response") or ""
        formatted["publicada"] = bool(formatted.get("publicada"))
        return formatted

    def create(self, data: Mapping[str, Any], *, user_id: Optional[str] = None) -> Dict[str, Any]:
        document = dict(data)
        document.setdefault("publicada", False)
        return super().create(document, user_id=user_id)

    def update(
        self,
        document_id: str,
        changes: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Messages are answered, never edited: only ``response`` is written."""

        response = changes.get("response")
        response = response.strip() if isinstance(response, str) else ""
        return super().update(document_id, {"response": response}, user_id=user_id)

    def unpublish(self, document_id: str, *, user_id: Optional[str] = None) -> Dict[str, Any]:
        current = self.require(document_id)
        if not current.get("publicada"):
            return current
        return self._repository.replace(
            self.collection, {**current, "publicada": False, "updated_by": user_id}
        )


class PhotoService(CollectionService):
    collection = "photos"
    entity = "Photo"
    public_detail = True
    file_fields = (("images", True),)
    search_fields = ("title", "description", "location", "album")
    sort_rule = SortRule(("createdAt", "updatedAt", "title", "date"))
    status_fields = True

    def filter_query(self, query: Query, params: Mapping[str, Any]) -> Query:
        for name in ("album", "location"):
            value = _text_param(params, name)
            if value:
                query = query.contains(name, value)
        return query


class ShowService(CollectionService):
    collection = "shows"
    entity = "Show"
    public_list = False
    file_fields = (("cover", False),)
    search_fields = ("title", "venue", "city", "country")
    sort_rule = SortRule(
        ("createdAt", "updatedAt", "title", "date"), default_field="date", default_direction=1
    )

    def _format(self, document: Mapping[str, Any], files: Mapping[str, Dict[str, Any]]) -> Dict[str, Any]:
        formatted = super()._format(document, files)
        date = parse_timestamp(document.get("date"))
        formatted["isPast"] = bool(date and date < utc_now())
        return formatted

    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        query = Query()
        search = _text_param(params, "search")
        if search:
            query = query.any_of(_search_query(self.search_fields, search))
        for name in ("city", "state"):
            value = _text_param(params, name)
            if value:
                query = query.contains(name, value)
        status = _text_param(params, "status")
        now = format_timestamp()
        if status == "past":
            query = query.compare("date", "<", now)
        elif status == "upcoming":
            query = query.compare("date", ">=", now)
        published = params.get("published")
        if published == "true":
            query = query.not_null("published_at")
        elif published == "false":
            query = query.is_null("published_at")
        return _page_envelope(
            self._repository, self.collection, query, self.sort_rule.resolve(params), params, self.format_many
        )


class TextService(CollectionService):
    collection = "texts"
    entity = "Text"
    public_detail = True
    file_fields = (("cover", False),)
    search_fields = ("title", "category", "author")
    published_only = True
    envelope = False

    def list_query(self, params: Mapping[str, Any], *, paginate: bool) -> Query:
        query = super().list_query(params, paginate=paginate)
        if params.get("published") == "false":
            query = Query().is_null("published_at")
            search = _text_param(params, "search")
            if search:
                query = query.any_of(_search_query(self.search_fields, search))
        return query


SERVICE_CLASSES = {
    "books": BookService,
    "cds": CdService,
    "dvds": DvdService,
    "clips": ClipService,
    "lyrics": LyricService,
    "messages": MessageService,
    "photos": PhotoService,
    "shows": ShowService,
    "texts": TextService,
}


def build_services(repository: DocumentRepository, uploads: UploadStore) -> Dict[str, CollectionService]:
    """Instantiate one service per catalog resource, keyed by its URL segment."""

    return {name: cls(repository, uploads) for name, cls in SERVICE_CLASSES.items()}


# ----------------------------------------------------------------------
# Media library and dashboard
# ----------------------------------------------------------------------
MEDIA_TYPES = ("image", "video", "audio", "raw", "other")
MEDIA_DATE_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "365d": timedelta(days=365),
}
MEDIA_SORT_FIELDS = ("name", "createdAt", "size")
_RAW_MEDIA = Query().any_of(
    Query().equals("provider_metadata.resource_type", "raw"),
    Query().starts_with("mime", "application/"),
    Query().starts_with("mime", "text/"),
)


def _media_type_query(query: Query, media_type: str) -> Query:
    if media_type not in MEDIA_TYPES:
        return query
    if media_type in {"image", "video", "audio"}:
        return query.starts_with("mime", f"{media_type}/")
    if media_type == "raw":
        return query.any_of(_RAW_MEDIA)
    if media_type == "other":
        query = query.not_equals("provider_metadata.resource_type", "raw")
        for prefix in ("image/", "video/", "audio/", "application/", "text/"):
            query = query.not_starts_with("mime", prefix)
        return query
    return query


def list_media(repository: DocumentRepository, params: Mapping[str, Any]) -> Dict[str, Any]:
    """Page through active upload files with the media library filters."""

    page = _int_param(params, "page", 1)
    page_size = _int_param(params, "pageSize", 25, maximum=100)

    query = Query().not_equals("deleted", True)
    search = _text_param(params, "search")
    if search:
        query = query.contains("name", search)
    query = _media_type_query(query, _text_param(params, "type"))

    date_from = parse_timestamp(_text_param(params, "dateFrom"))
    date_to = parse_timestamp(_text_param(params, "dateTo"))
    if date_from or date_to:
        if date_from:
            query = query.compare("createdAt", ">=", date_from)
        if date_to:
            query = query.compare("createdAt", "<=", date_to)
    else:
        window = MEDIA_DATE_RANGES.get(_text_param(params, "dateRange"))
        if window is not None:
            query = query.compare("createdAt", ">=", utc_now() - window)

    size = _text_param(params, "size")
    if size == "small":
        query = query.compare("size", "<", 1024)
    elif size == "medium":
        query = query.compare("size", ">=", 1024).compare("size", "<", 5120)
    elif size == "large":
        query = query.compare("size", ">=", 5120)

    sort_field = _text_param(params, "sort")
    if sort_field not in MEDIA_SORT_FIELDS:
        sort_field = "createdAt"
    direction = 1 if _text_param(params, "order") == "asc" else -1

    total = repository.count(UPLOAD_COLLECTION, query)
    records = repository.find(
        UPLOAD_COLLECTION,
        query,
        sort=[(sort_field, direction)],
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    return {
        "data": [normalize_upload_file(record) for record in records],
        "pagination": {
            "page": page,
            "pageSize": page_size,
            "total": total,
            "totalPages": math.ceil(total / page_size) or 1,
        },
    }


DASHBOARD_COLLECTIONS = tuple(SERVICE_CLASSES)


def build_dashboard(repository: DocumentRepository, *, latest_limit: int = 5) -> Dict[str, Any]:
    """Collect per-collection counts and the most recently edited documents."""

    collections: Dict[str, Dict[str, int]] = {}
    recent: List[Dict[str, Any]] = []
    stored = set(repository.list_collections())
    for name in DASHBOARD_COLLECTIONS:
        if name not in stored:
            collections[name] = {"total": 0, "published": 0}
            continue
        collections[name] = {
            "total": repository.count(name),
            "published": repository.count(name, published_query()),
        }
        for document in repository.find(name, sort=[("updatedAt", -1)], limit=latest_limit):
            recent.append(
                {
                    "id": document["_id"],
                    "title": document.get("title") or document.get("name") or "Untitled",
                    "updatedAt": document.get("updatedAt"),
                    "type": name,
                }
            )
    recent.sort(key=lambda entry: entry.get("updatedAt") or "", reverse=True)

    cd_tracks = repository.count("cd_tracks")
    dvd_tracks = repository.count("dvd_tracks")
    return {
        "collections": collections,
        "tracks": {"cds": cd_tracks, "dvds": dvd_tracks, "total": cd_tracks + dvd_tracks},
        "latest": recent[:latest_limit],
    }


__all__ = [
    "BookService",
    "CdService",
    "ClipService",
    "CollectionService",
    "DvdService",
    "InvalidIdentifierError",
    "LyricService",
    "MEDIA_TYPES",
    "MessageService",
    "PhotoService",
    "ResourceNotFoundError",
    "SERVICE_CLASSES",
    "ShowService",
    "SortRule",
    "TextService",
    "TrackService",
    "TrackedCollectionService",
    "build_dashboard",
    "build_services",
    "list_media",
]
