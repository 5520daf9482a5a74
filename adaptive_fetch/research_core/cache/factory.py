from __future__ import annotations

from pathlib import Path

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.cache.base import ResourceStorage
from adaptive_fetch.research_core.cache.filesystem import FileSystemResourceStorage
from adaptive_fetch.research_core.cache.memory import MemoryResourceStorage


def create_resource_storage(
    backend: str = "memory",
    *,
    root_dir: str | Path | None = None,
) -> ResourceStorage:
    kind = (backend or "memory").lower().strip()
    if kind == "memory":
        return MemoryResourceStorage()
    if kind == "filesystem":
        return FileSystemResourceStorage(root_dir or None)
    raise ValueError(f"Unsupported RESOURCE_STORAGE: {backend}")


def resource_storage_from_settings(settings: Settings) -> ResourceStorage:
    return create_resource_storage(
        settings.resource_storage,
        root_dir=settings.resource_storage_root or None,
    )
