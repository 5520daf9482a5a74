from __future__ import annotations

import asyncio
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import urlsplit

from loguru import logger

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.models.interfaces import STRATEGY_NAMES, StrategyConfigEntry

CONFIG_FILENAME = "scraping-strategies.md"

TABLE_PREAMBLE = """# Scraping Strategy Configuration

This file defines which scraping strategy to use for different URL prefixes (firecrawl, brightdata, native).
Rows are matched longest-prefix first. A prefix with a slash matches host + path; a bare host also matches its subdomains.

| prefix | default_strategy | notes |
| ------ | ---------------- | ----- |"""

SEED_ENTRIES: tuple[StrategyConfigEntry, ...] = (
    StrategyConfigEntry("reddit.com", "brightdata", "Blocks plain HTTP clients"),
    StrategyConfigEntry("linkedin.com", "brightdata", "Login wall and bot detection"),
    StrategyConfigEntry("yelp.com/biz/", "brightdata", "Business pages need an unlocker"),
    StrategyConfigEntry("x.com", "firecrawl", "Content is rendered client-side"),
)


def extract_url_pattern(url: str) -> str:
    """Key a URL by host[:port] plus every path segment but the last.

    https://yelp.com/biz/dolly-san-francisco -> yelp.com/biz/
    https://example.com/about -> example.com
    Query strings and fragments are dropped; unparseable input comes back as-is.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return url
    if not parts.scheme or not hostname:
        return url

    host = f"{hostname}:{port}" if port else hostname
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) <= 1:
        return host
    return host + "/" + "/".join(segments[:-1]) + "/"


def _matches_prefix(hostname: str, pathname: str, prefix: str) -> bool:
    if "/" in prefix:
        full_path = hostname + pathname
        return full_path.startswith(prefix) or full_path.startswith("www." + prefix)
    return hostname == prefix or hostname == "www." + prefix or hostname.endswith("." + prefix)


def parse_strategy_table(content: str) -> list[StrategyConfigEntry]:
    """Read the markdown table; rows that don't parse are skipped."""
    entries: list[StrategyConfigEntry] = []
    header_found = False

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        is_row = stripped.startswith("|") and stripped.endswith("|")
        if not is_row:
            if header_found:
                break
            continue

        if not header_found:
            lowered = stripped.lower()
            if "prefix" in lowered and "default_strategy" in lowered and "notes" in lowered:
                header_found = True
            continue

        if "---" in stripped:
            continue

        entry = _parse_row(stripped)
        if entry is None:
            logger.debug(f"Skipping malformed strategy config row: {stripped}")
            continue
        entries.append(entry)

    return entries


def _parse_row(row: str) -> StrategyConfigEntry | None:
    cells = [cell.strip() for cell in row[1:-1].split("|")]
    if len(cells) < 2:
        return None
    prefix, strategy = cells[0], cells[1]
    if not prefix or strategy not in STRATEGY_NAMES:
        return None
    notes = cells[2] if len(cells) > 2 else ""
    return StrategyConfigEntry(prefix=prefix, default_strategy=strategy, notes=notes)


def render_strategy_table(entries: list[StrategyConfigEntry]) -> str:
    rows = [f"| {e.prefix} | {e.default_strategy} | {e.notes or ''} |" for e in entries]
    return "\n".join([TABLE_PREAMBLE, *rows, ""])


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class StrategyConfigStore(ABC):
    """URL prefix -> preferred strategy hints."""

    @abstractmethod
    async def load_config(self) -> list[StrategyConfigEntry]: ...

    @abstractmethod
    async def save_config(self, entries: list[StrategyConfigEntry]) -> None: ...

    async def upsert_entry(self, entry: StrategyConfigEntry) -> None:
        entries = await self.load_config()
        for index, existing in enumerate(entries):
            if existing.prefix == entry.prefix:
                entries[index] = entry
                break
        else:
            entries.append(entry)
        await self.save_config(entries)

    async def get_strategy_for_url(self, url: str) -> str | None:
        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        if not parts.hostname:
            return None

        entries = await self.load_config()
        for entry in sorted(entries, key=lambda e: len(e.prefix), reverse=True):
            if _matches_prefix(parts.hostname, parts.path, entry.prefix):
                return entry.default_strategy
        return None


class FilesystemStrategyConfigStore(StrategyConfigStore):
    """Markdown-table hint file. No cross-process locking: last writer wins."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        *,
        env_path: str | None = None,
        scratch_dir: str | Path | None = None,
    ):
        self._explicit_path = Path(config_path) if config_path else None
        self._env_path = Path(env_path) if env_path and env_path.strip() else None
        self._scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())

    @classmethod
    def from_settings(cls, settings: Settings) -> "FilesystemStrategyConfigStore":
        return cls(env_path=settings.strategy_config_path)

    @property
    def default_path(self) -> Path:
        return self._scratch_dir / "adaptive-fetch" / CONFIG_FILENAME

    @property
    def config_path(self) -> Path:
        return self._explicit_path or self._env_path or self.default_path

    def _resolve_path(self) -> Path:
        path = self.config_path
        if path == self.default_path and not path.exists():
            _write_atomic(path, render_strategy_table(list(SEED_ENTRIES)))
            logger.info(f"Seeded strategy config at {path}")
        return path

    def _load_sync(self) -> list[StrategyConfigEntry]:
        path = self._resolve_path()
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return parse_strategy_table(content)

    async def load_config(self) -> list[StrategyConfigEntry]:
        return await asyncio.to_thread(self._load_sync)

    async def save_config(self, entries: list[StrategyConfigEntry]) -> None:
        path = self.config_path
        await asyncio.to_thread(_write_atomic, path, render_strategy_table(entries))
