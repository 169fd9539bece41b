"""Request payload models of the HTTP API."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, ValidationInfo, field_validator
from pydantic_core import ErrorDetails


_VIMEO_PATTERN = re.compile(
    r"^(https?://)?(www\.|player\.)?vimeo\.com/(\d+|video/\d+|channels/.+/\d+|groups/.+/videos/\d+)",
    re.IGNORECASE,
)
_YOUTUBE_EMBED_PATTERN = re.compile(
    r"^(https?://)?(www\.|m\.)?(youtube\.com/embed/|youtu\.be/)[\w-]+", re.IGNORECASE
)
_YOUTUBE_WATCH_PATTERN = re.compile(
    r"^(https?://)?(www\.|m\.)?(youtube\.com/watch\?v=|youtu\.be/)[\w-]{11}(&.+)?$", re.IGNORECASE
)

Status = Literal["draft", "published"]


def flatten_errors(errors: Sequence[ErrorDetails]) -> Dict[str, Any]:
    """Group validation errors into ``{"formErrors": [...], "fieldErrors": {...}}``."""

    form_errors: List[str] = []
    field_errors: Dict[str, List[str]] = {}
    for error in errors:
        location = [part for part in error.get("loc", ()) if part not in ("body", "query")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        if not location:
            form_errors.append(message)
            continue
        field_errors.setdefault(str(location[0]), []).append(message)
    return {"formErrors": form_errors, "fieldErrors": field_errors}


def _check_pattern(value: Optional[str], *patterns: re.Pattern, message: str) -> Optional[str]:
    if value is None:
        return value
    if not re.match(r"^https?://", value, re.IGNORECASE):
        raise ValueError("Invalid URL")
    if not any(pattern.match(value) for pattern in patterns):
        raise ValueError(message)
    return value


def _check_video_url(value: Optional[str]) -> Optional[str]:
    return _check_pattern(
        value, _VIMEO_PATTERN, _YOUTUBE_EMBED_PATTERN, message="Provide a Vimeo or YouTube URL"
    )


def _check_clip_url(value: Optional[str]) -> Optional[str]:
    return _check_pattern(value, _YOUTUBE_WATCH_PATTERN, message="Provide a YouTube URL")


def _check_passwords_match(value: str, info: ValidationInfo) -> str:
    if value != info.data.get("password"):
        raise ValueError("Passwords do not match")
    return value


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the client sent, keyed by their wire names."""

        return self.model_dump(exclude_unset=True, by_alias=True)


# ----------------------------------------------------------------------
# Books
# ----------------------------------------------------------------------
class BookCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    author: Optional[str] = None
    info: Optional[str] = None
    publishing_company: Optional[str] = None
    release_date: Optional[str] = None
    ISBN: Optional[str] = None
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None


class BookUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = None
    info: Optional[str] = None
    publishing_company: Optional[str] = None
    release_date: Optional[str] = None
    ISBN: Optional[str] = None
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None


# ----------------------------------------------------------------------
# CDs, DVDs and their tracks
# ----------------------------------------------------------------------
class CdTrackPayload(Payload):
    id: Optional[str] = Field(None, alias="_id")
    name: str = Field(..., min_length=1)
    publishing_company: Optional[str] = None
    composers: Optional[str] = None
    time: Optional[str] = None
    track: Optional[str] = None
    lyric: Optional[str] = None
    data_sheet: Optional[str] = None


class CdTrackUpdatePayload(Payload):
    name: Optional[str] = Field(None, min_length=1)
    publishing_company: Optional[str] = None
    composers: Optional[str] = None
    time: Optional[str] = None
    track: Optional[str] = None
    lyric: Optional[str] = None
    data_sheet: Optional[str] = None


class DvdTrackPayload(Payload):
    id: Optional[str] = Field(None, alias="_id")
    name: str = Field(..., min_length=1)
    composers: Optional[str] = None
    label: Optional[str] = None
    time: Optional[str] = None
    publishing_company: Optional[str] = None
    lyric: Optional[str] = None
    track: Optional[str] = None


class DvdTrackUpdatePayload(Payload):
    name: Optional[str] = Field(None, min_length=1)
    composers: Optional[str] = None
    label: Optional[str] = None
    time: Optional[str] = None
    publishing_company: Optional[str] = None
    lyric: Optional[str] = None
    track: Optional[str] = None


class CdCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    company: Optional[str] = None
    release_date: Optional[str] = None
    info: Optional[str] = None
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None
    tracks: List[CdTrackPayload] = Field(default_factory=list)


class CdUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    company: Optional[str] = None
    release_date: Optional[str] = None
    info: Optional[str] = None
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None
    tracks: Optional[List[CdTrackPayload]] = None


class DvdCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    company: Optional[str] = None
    release_date: Optional[str] = None
    info: Optional[str] = None
    videoUrl: str
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None
    tracks: List[DvdTrackPayload] = Field(default_factory=list)

    @field_validator("videoUrl")
    @classmethod
    def check_video_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_video_url(value)


class DvdUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    company: Optional[str] = None
    release_date: Optional[str] = None
    info: Optional[str] = None
    videoUrl: Optional[str] = None
    cover: Optional[str] = None
    status: Optional[Status] = None
    publishedAt: Optional[datetime] = None
    published_at: Optional[datetime] = None
    tracks: Optional[List[DvdTrackPayload]] = None

    @field_validator("videoUrl")
    @classmethod
    def check_video_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_video_url(value)


class TrackAppendPayload(Payload):
    track: Dict[str, Any]


class TrackReorderPayload(Payload):
    order: List[str] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Clips, lyrics, photos, shows, texts
# ----------------------------------------------------------------------
class ClipCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    info: Optional[str] = None
    url: str
    cover: List[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_clip_url(value)


class ClipUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    info: Optional[str] = None
    url: Optional[str] = None
    cover: Optional[List[str]] = None
    published_at: Optional[datetime] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_clip_url(value)


class LyricCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    lyric: Optional[str] = None
    composers: Optional[str] = None
    album: Optional[str] = None
    year: Optional[str] = None
    published_at: Optional[datetime] = None


class LyricUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    lyric: Optional[str] = None
    composers: Optional[str] = None
    album: Optional[str] = None
    year: Optional[str] = None
    published_at: Optional[datetime] = None


class PhotoCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    album: Optional[str] = None
    status: Optional[Status] = None
    published_at: Optional[datetime] = None


class PhotoUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    album: Optional[str] = None
    status: Optional[Status] = None
    published_at: Optional[datetime] = None


class ShowCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    date: datetime
    time: Optional[str] = None
    venue: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    ticket_url: Optional[HttpUrl] = None
    description: Optional[str] = None
    cover: Optional[str] = None
    published_at: Optional[datetime] = None


class ShowUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime] = None
    time: Optional[str] = None
    venue: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    ticket_url: Optional[HttpUrl] = None
    description: Optional[str] = None
    cover: Optional[str] = None
    published_at: Optional[datetime] = None


class TextCreatePayload(Payload):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    excerpt: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    cover: Optional[str] = None
    published_at: Optional[datetime] = None


class TextUpdatePayload(Payload):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    cover: Optional[str] = None
    published_at: Optional[datetime] = None


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------
class MessageCreatePayload(Payload):
    name: str = Field(..., min_length=1)
    email: EmailStr
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    response: Optional[str] = None
    publicada: Optional[bool] = None


class MessageResponsePayload(Payload):
    response: Optional[str] = None


# ----------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------
class LoginPayload(Payload):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RegisterPayload(Payload):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8)
    confirmPassword: str = Field(..., min_length=8)

    @field_validator("confirmPassword")
    @classmethod
    def check_passwords_match(cls, value: str, info: ValidationInfo) -> str:
        return _check_passwords_match(value, info)


class ForgotPasswordPayload(Payload):
    email: EmailStr


class ResetPasswordPayload(Payload):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)
    confirmPassword: str = Field(..., min_length=8)

    @field_validator("confirmPassword")
    @classmethod
    def check_passwords_match(cls, value: str, info: ValidationInfo) -> str:
        return _check_passwords_match(value, info)


CREATE_PAYLOADS = {
    "books": BookCreatePayload,
    "cds": CdCreatePayload,
    "dvds": DvdCreatePayload,
    "clips": ClipCreatePayload,
    "lyrics": LyricCreatePayload,
    "messages": MessageCreatePayload,
    "photos": PhotoCreatePayload,
    "shows": ShowCreatePayload,
    "texts": TextCreatePayload,
}

UPDATE_PAYLOADS = {
    "books": BookUpdatePayload,
    "cds": CdUpdatePayload,
    "dvds": DvdUpdatePayload,
    "clips": ClipUpdatePayload,
    "lyrics": LyricUpdatePayload,
    "messages": MessageResponsePayload,
    "photos": PhotoUpdatePayload,
    "shows": ShowUpdatePayload,
    "texts": TextUpdatePayload,
}

TRACK_CREATE_PAYLOADS = {"cds": CdTrackPayload, "dvds": DvdTrackPayload}
TRACK_UPDATE_PAYLOADS = {"cds": CdTrackUpdatePayload, "dvds": DvdTrackUpdatePayload}
