from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from loguru import logger

from adaptive_fetch.research_core.cache.base import (
    ResourceContent,
    ResourceData,
    ResourceMetadata,
    ResourceNotFoundError,
    ResourceStorage,
    WriteClock,
    sanitize_url,
    timestamp_digits,
)

CONTENT_SUFFIX = ".md"
METADATA_SUFFIX = ".meta.json"


def default_root_dir() -> Path:
    return Path(tempfile.gettempdir()) / "adaptive-fetch" / "resources"


def _write_atomic(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileSystemResourceStorage(ResourceStorage):
    """One content file plus one JSON metadata sidecar per resource under root_dir.

    The sidecar is written last, so a resource only shows up in listings once
    both files are in place.
    """

    def __init__(self, root_dir: str | Path | None = None, clock: WriteClock | None = None):
        super().__init__(clock)
        self.root_dir = (Path(root_dir).expanduser() if root_dir else default_root_dir()).absolute()

    async def init(self) -> None:
        await asyncio.to_thread(self.root_dir.mkdir, parents=True, exist_ok=True)

    def _paths_for_uri(self, uri: str) -> tuple[Path, Path]:
        if not uri.startswith("file://"):
            raise ValueError(f"Invalid file URI: {uri}")
        content_path = Path(uri[len("file://"):])
        if content_path.parent != self.root_dir or not content_path.name.endswith(CONTENT_SUFFIX):
            raise ResourceNotFoundError(uri)
        stem = content_path.name[: -len(CONTENT_SUFFIX)]
        return content_path, content_path.with_name(stem + METADATA_SUFFIX)

    @staticmethod
    def _read_sidecar(path: Path) -> ResourceMetadata:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Metadata sidecar is not an object: {path}")
        return ResourceMetadata.model_validate(payload)

    def _load_all_sync(self) -> list[ResourceData]:
        if not self.root_dir.exists():
            return []

        resources: list[ResourceData] = []
        for sidecar in self.root_dir.glob(f"*{METADATA_SUFFIX}"):
            stem = sidecar.name[: -len(METADATA_SUFFIX)]
            content_path = sidecar.with_name(stem + CONTENT_SUFFIX)
            if not content_path.exists():
                continue
            try:
                meta = self._read_sidecar(sidecar)
            except (OSError, ValueError) as exc:
                logger.warning(f"Skipping unreadable resource metadata {sidecar.name}: {exc}")
                continue
            resources.append(
                ResourceData(
                    uri=f"file://{content_path}",
                    name=stem,
                    description=meta.description or f"Fetched content from {meta.url}",
                    mime_type=meta.content_type or "text/plain",
                    metadata=meta,
                )
            )
        return resources

    async def _load_all(self) -> list[ResourceData]:
        return await asyncio.to_thread(self._load_all_sync)

    def _read_sync(self, uri: str) -> ResourceContent:
        content_path, sidecar = self._paths_for_uri(uri)
        if not content_path.exists() or not sidecar.exists():
            raise ResourceNotFoundError(uri)
        meta = self._read_sidecar(sidecar)
        return ResourceContent(
            uri=uri,
            mime_type=meta.content_type or "text/plain",
            text=content_path.read_text(encoding="utf-8"),
            resource_type=meta.resource_type,
        )

    async def read(self, uri: str) -> ResourceContent:
        return await asyncio.to_thread(self._read_sync, uri)

    def _write_sync(self, meta: ResourceMetadata, content: str) -> str:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        # random suffix keeps ids unique across processes sharing one root
        resource_id = "_".join(
            (
                meta.resource_type,
                sanitize_url(meta.url)[:120],
                timestamp_digits(meta.timestamp),
                uuid4().hex[:8],
            )
        )
        content_path = self.root_dir / f"{resource_id}{CONTENT_SUFFIX}"
        _write_atomic(content_path, content)
        _write_atomic(
            self.root_dir / f"{resource_id}{METADATA_SUFFIX}",
            json.dumps(meta.to_sidecar(), ensure_ascii=False, indent=2),
        )
        return f"file://{content_path}"

    async def write(
        self,
        url: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        meta = self._build_metadata(url, metadata)
        uri = await asyncio.to_thread(self._write_sync, meta, content)
        logger.debug(f"Cached {meta.resource_type} resource {uri}")
        return uri

    def _exists_sync(self, uri: str) -> bool:
        try:
            content_path, sidecar = self._paths_for_uri(uri)
        except ResourceNotFoundError:
            return False
        return content_path.exists() and sidecar.exists()

    async def exists(self, uri: str) -> bool:
        return await asyncio.to_thread(self._exists_sync, uri)

    def _delete_sync(self, uri: str) -> None:
        content_path, sidecar = self._paths_for_uri(uri)
        if not content_path.exists() or not sidecar.exists():
            raise ResourceNotFoundError(uri)
        sidecar.unlink()
        content_path.unlink()

    async def delete(self, uri: str) -> None:
        await asyncio.to_thread(self._delete_sync, uri)
