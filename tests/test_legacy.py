from __future__ import annotations

from bson import ObjectId

from backoffice.services.documents import Query
from backoffice.services.legacy import (
    build_paginated_response,
    build_regex_filter,
    ensure_https_url,
    normalize_document,
    normalize_file_id_list,
    normalize_track_list,
    normalize_upload_file,
    parse_legacy_pagination,
    resolve_list_response,
    resolve_status_filter,
    with_published_flag,
)
from backoffice.services.naming import format_timestamp, is_object_id, parse_timestamp, slugify


def test_slugify_folds_accents_and_punctuation() -> None:
    assert slugify("  Canção do Mar! ") == "cancao-do-mar"
    assert slugify("A -- B") == "a-b"
    assert len(slugify("???")) == 6


def test_object_id_and_timestamp_helpers() -> None:
    assert is_object_id(str(ObjectId()))
    assert is_object_id(ObjectId())
    assert not is_object_id("not-an-id")
    assert not is_object_id(None)

    stamp = format_timestamp(parse_timestamp("2024-05-01T10:20:30.123456Z"))
    assert stamp == "2024-05-01T10:20:30.123Z"
    assert parse_timestamp("yesterday") is None


def test_normalize_document_mirrors_identifiers() -> None:
    object_id = ObjectId()
    normalized = normalize_document({"_id": object_id, "nested": [{"id": "abc"}]})

    assert normalized["_id"] == normalized["id"] == str(object_id)
    assert normalized["nested"][0]["_id"] == "abc"
    assert normalize_document(None) is None


def test_upload_urls_are_forced_to_https() -> None:
    upload = normalize_upload_file(
        {
            "_id": "1",
            "url": "http://cdn.example.com/a.png",
            "formats": {
                "small": {"url": "//cdn.example.com/a_small.png"},
                "broken": "oops",
            },
        }
    )

    assert upload["url"] == "https://cdn.example.com/a.png"
    assert upload["formats"] == {"small": {"url": "https://cdn.example.com/a_small.png"}}
    assert ensure_https_url("blob:local") == "blob:local"


def test_regex_filter_escapes_specials() -> None:
    assert build_regex_filter("a.b*") == {"$regex": "a\\.b\\*", "$options": "i"}
    assert build_regex_filter(" rock", starts_with=True)["$regex"] == "^rock"


def test_file_id_list_is_deduplicated() -> None:
    first, second = str(ObjectId()), str(ObjectId())

    ids = normalize_file_id_list([first, {"_id": second}, first, "bad", None])

    assert ids == [first, second]
    assert normalize_file_id_list(first) == [first]
    assert normalize_file_id_list(None) == []


def test_track_list_hydrates_lyrics() -> None:
    lyric_id = str(ObjectId())
    tracks = normalize_track_list(
        [
            {"ref": {"_id": "t1", "name": "Intro", "lyric": lyric_id, "track": {"url": "http://x/a.mp3"}}},
            "garbage",
            {},
        ],
        {lyric_id: {"_id": lyric_id, "title": "Intro", "composers": "Ana"}},
    )

    assert len(tracks) == 1
    assert tracks[0]["track"]["url"] == "https://x/a.mp3"
    assert tracks[0]["lyrics"]["composer"] == "Ana"


def test_legacy_pagination_dialects() -> None:
    by_page = parse_legacy_pagination({"page": "3", "pageSize": "10"})
    assert (by_page.start, by_page.limit, by_page.should_paginate) == (20, 10, True)

    by_limit = parse_legacy_pagination({"_limit": "5", "_start": "15"})
    assert (by_limit.start, by_limit.limit) == (15, 5)

    page_with_limit = parse_legacy_pagination({"page": "2", "limit": "4"})
    assert (page_with_limit.start, page_with_limit.page_size) == (4, 4)

    assert not parse_legacy_pagination({}).should_paginate
    assert not parse_legacy_pagination({"_limit": "0"}).should_paginate


def test_status_filter_defaults() -> None:
    assert resolve_status_filter({"status": "all"}) is None
    assert resolve_status_filter({"page": "1"}) is None
    assert resolve_status_filter({}) == Query().not_null("published_at")
    assert resolve_status_filter({"published": "false"}) == Query().is_null("published_at")
    assert resolve_status_filter({}, default_status="all") is None


def test_paginated_response_and_resolution() -> None:
    envelope = build_paginated_response([1, 2], total=5, limit=2, start=2)
    assert envelope["pagination"] == {"page": 2, "totalPages": 3, "total": 5, "limit": 2}

    resolved = resolve_list_response([1, 2, 3], page_size=2, current_page=0)
    assert resolved["pagination"] == {"page": 1, "totalPages": 2, "total": 3, "limit": 2}

    passthrough = resolve_list_response(envelope, page_size=10, current_page=1)
    assert passthrough["items"] == [1, 2]
    assert passthrough["pagination"]["page"] == 2


def test_published_flag() -> None:
    assert with_published_flag({"published_at": None})["published"] is False
    assert with_published_flag({"published_at": "2024-01-01"})["published"] is True
    assert with_published_flag(None) is None
