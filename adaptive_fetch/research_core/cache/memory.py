from __future__ import annotations

from typing import Any, Mapping

from loguru import logger

from adaptive_fetch.research_core.cache.base import (
    ResourceContent,
    ResourceData,
    ResourceNotFoundError,
    ResourceStorage,
    WriteClock,
    resource_name,
    sanitize_url,
    timestamp_digits,
)


class MemoryResourceStorage(ResourceStorage):
    """Process-lifetime storage; contents are lost on restart."""

    def __init__(self, clock: WriteClock | None = None):
        super().__init__(clock)
        self._resources: dict[str, tuple[ResourceData, str]] = {}

    async def _load_all(self) -> list[ResourceData]:
        return [data for data, _ in self._resources.values()]

    async def read(self, uri: str) -> ResourceContent:
        entry = self._resources.get(uri)
        if entry is None:
            raise ResourceNotFoundError(uri)
        data, content = entry
        return ResourceContent(
            uri=uri,
            mime_type=data.mime_type,
            text=content,
            resource_type=data.metadata.resource_type,
        )

    async def write(
        self,
        url: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        meta = self._build_metadata(url, metadata)
        uri = f"memory://{meta.resource_type}/{sanitize_url(url)}_{timestamp_digits(meta.timestamp)}"
        self._resources[uri] = (
            ResourceData(
                uri=uri,
                name=resource_name(url, meta),
                description=meta.description or f"Fetched content from {url}",
                mime_type=meta.content_type or "text/plain",
                metadata=meta,
            ),
            content,
        )
        logger.debug(f"Cached {meta.resource_type} resource {uri}")
        return uri

    async def exists(self, uri: str) -> bool:
        return uri in self._resources

    async def delete(self, uri: str) -> None:
        if uri not in self._resources:
            raise ResourceNotFoundError(uri)
        del self._resources[uri]
