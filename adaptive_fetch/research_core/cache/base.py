from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from adaptive_fetch.research_core.models.interfaces import ResourceType

RESOURCE_TYPES: tuple[str, ...] = ("raw", "cleaned", "extracted")


class ResourceNotFoundError(LookupError):
    def __init__(self, uri: str):
        super().__init__(f"Resource not found: {uri}")
        self.uri = uri


class ResourceMetadata(BaseModel):
    """Per-resource metadata; serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: str
    timestamp: str
    resource_type: ResourceType = Field(default="raw", alias="resourceType")
    extraction_prompt: str | None = Field(default=None, alias="extractionPrompt")
    content_type: str | None = Field(default=None, alias="contentType")
    description: str | None = None

    def to_sidecar(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(slots=True)
class ResourceData:
    uri: str
    name: str
    description: str
    mime_type: str
    metadata: ResourceMetadata


@dataclass(slots=True)
class ResourceContent:
    uri: str
    mime_type: str
    text: str
    resource_type: str


@dataclass(slots=True)
class MultiResourceWrite:
    url: str
    raw: str | None = None
    cleaned: str | None = None
    extracted: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(slots=True)
class MultiResourceUris:
    raw: str | None = None
    cleaned: str | None = None
    extracted: str | None = None


class WriteClock:
    """Hands out strictly increasing UTC write times at microsecond resolution."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last: datetime | None = None

    def next(self) -> datetime:
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


DEFAULT_WRITE_CLOCK = WriteClock()


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def timestamp_digits(timestamp: str) -> str:
    return re.sub(r"[^0-9]", "", timestamp)


def sanitize_url(url: str) -> str:
    stripped = re.sub(r"^https?://", "", url)
    return re.sub(r"[^a-zA-Z0-9.-]", "_", stripped)


def resource_name(url: str, metadata: ResourceMetadata) -> str:
    hostname = urlsplit(url).hostname or sanitize_url(url)
    return f"{metadata.resource_type}/{hostname}_{metadata.timestamp[:10]}"


class ResourceStorage(ABC):
    """Append-only store of raw / cleaned / extracted representations of fetched URLs.

    Resources are never edited in place: writing again for the same URL creates a
    new resource, and "most recent" is decided by the write timestamp.
    """

    def __init__(self, clock: WriteClock | None = None):
        self._clock = clock or DEFAULT_WRITE_CLOCK

    @abstractmethod
    async def _load_all(self) -> list[ResourceData]: ...

    @abstractmethod
    async def read(self, uri: str) -> ResourceContent: ...

    @abstractmethod
    async def write(
        self,
        url: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> str: ...

    @abstractmethod
    async def exists(self, uri: str) -> bool: ...

    @abstractmethod
    async def delete(self, uri: str) -> None: ...

    def _build_metadata(self, url: str, metadata: Mapping[str, Any] | None) -> ResourceMetadata:
        fields = dict(metadata or {})
        # write time and url always come from the storage, never from the caller
        fields.pop("timestamp", None)
        fields.pop("url", None)
        prompt = fields.pop("extract", None)
        if prompt and not (fields.get("extractionPrompt") or fields.get("extraction_prompt")):
            fields["extractionPrompt"] = prompt
        fields["url"] = url
        fields["timestamp"] = format_timestamp(self._clock.next())
        return ResourceMetadata.model_validate(fields)

    async def list(self) -> list[ResourceData]:
        resources = await self._load_all()
        return sorted(resources, key=lambda r: r.metadata.timestamp, reverse=True)

    async def write_multi(self, data: MultiResourceWrite) -> MultiResourceUris:
        """Store each provided representation as its own resource.

        Every resource gets the shared metadata. The extraction prompt is
        recorded on the extracted resource only.
        """
        representations = (
            ("raw", data.raw),
            ("cleaned", data.cleaned),
            ("extracted", data.extracted),
        )
        if all(content is None for _, content in representations):
            raise ValueError("write_multi needs at least one of raw, cleaned or extracted")

        shared = dict(data.metadata or {})
        prompts = [
            shared.pop(key, None) for key in ("extract", "extractionPrompt", "extraction_prompt")
        ]
        prompt = next((p for p in prompts if p), None)
        if data.extracted is not None and not prompt:
            raise ValueError("An extracted resource must record the extraction prompt")

        uris = MultiResourceUris()
        for resource_type, content in representations:
            if content is None:
                continue
            metadata = {**shared, "resourceType": resource_type}
            if resource_type == "extracted":
                metadata["extractionPrompt"] = prompt
            uri = await self.write(data.url, content, metadata)
            setattr(uris, resource_type, uri)
        return uris

    async def find_by_url(self, url: str) -> list[ResourceData]:
        return [r for r in await self.list() if r.metadata.url == url]

    async def find_by_url_and_extract(
        self,
        url: str,
        extract_query: str | None = None,
    ) -> list[ResourceData]:
        """Resources for url made with exactly this prompt; no prompt means prompt-less only."""
        matches: list[ResourceData] = []
        for resource in await self.find_by_url(url):
            prompt = resource.metadata.extraction_prompt
            if not extract_query:
                if not prompt:
                    matches.append(resource)
            elif prompt == extract_query:
                matches.append(resource)
        return matches
