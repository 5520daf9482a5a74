from __future__ import annotations

import json

import pytest

from adaptive_fetch.research_core.cache.base import (
    MultiResourceWrite,
    ResourceNotFoundError,
    WriteClock,
    sanitize_url,
)
from adaptive_fetch.research_core.cache.factory import create_resource_storage
from adaptive_fetch.research_core.cache.filesystem import FileSystemResourceStorage
from adaptive_fetch.research_core.cache.memory import MemoryResourceStorage

URL = "https://example.com/test"


@pytest.fixture(params=["memory", "filesystem"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryResourceStorage()
    return FileSystemResourceStorage(tmp_path / "resources")


def _missing_uri(storage) -> str:
    if isinstance(storage, FileSystemResourceStorage):
        return f"file://{storage.root_dir / 'missing.md'}"
    return "memory://raw/example.com_test_0"


def test_write_clock_is_strictly_increasing():
    clock = WriteClock()
    moments = [clock.next() for _ in range(500)]

    assert all(a < b for a, b in zip(moments, moments[1:]))


def test_sanitize_url():
    assert sanitize_url("https://example.com/a b?x=1") == "example.com_a_b_x_1"


@pytest.mark.asyncio
async def test_write_multi_stores_each_representation(storage):
    uris = await storage.write_multi(
        MultiResourceWrite(
            url=URL,
            raw="<html>raw</html>",
            cleaned="raw",
            extracted="Title: raw",
            metadata={"extractionPrompt": "get the title", "source": "native"},
        )
    )

    for resource_type in ("raw", "cleaned", "extracted"):
        content = await storage.read(getattr(uris, resource_type))
        assert content.resource_type == resource_type

    assert (await storage.read(uris.extracted)).text == "Title: raw"
    prompts = {
        r.metadata.resource_type: r.metadata.extraction_prompt
        for r in await storage.find_by_url(URL)
    }
    assert prompts == {"raw": None, "cleaned": None, "extracted": "get the title"}


@pytest.mark.asyncio
async def test_write_multi_skips_absent_parts(storage):
    uris = await storage.write_multi(MultiResourceWrite(url=URL, raw="body"))

    assert uris.raw is not None
    assert uris.cleaned is None
    assert uris.extracted is None
    assert len(await storage.list()) == 1


@pytest.mark.asyncio
async def test_write_multi_rejects_extracted_without_prompt(storage):
    with pytest.raises(ValueError):
        await storage.write_multi(MultiResourceWrite(url=URL, extracted="Title"))
    assert await storage.list() == []


@pytest.mark.asyncio
async def test_write_multi_rejects_empty_write(storage):
    with pytest.raises(ValueError):
        await storage.write_multi(MultiResourceWrite(url=URL))


@pytest.mark.asyncio
async def test_find_by_url_and_extract_matches_prompt_exactly(storage):
    await storage.write_multi(
        MultiResourceWrite(
            url=URL,
            raw="<html>page</html>",
            cleaned="page",
            extracted="Title",
            metadata={"extract": "get the title"},
        )
    )
    await storage.write_multi(
        MultiResourceWrite(
            url=URL,
            raw="<html>page</html>",
            cleaned="page",
            extracted="a@b.c",
            metadata={"extractionPrompt": "find emails"},
        )
    )
    await storage.write_multi(MultiResourceWrite(url=URL, raw="<html>page</html>", cleaned="page"))

    plain = await storage.find_by_url_and_extract(URL)
    titled = await storage.find_by_url_and_extract(URL, "get the title")
    emails = await storage.find_by_url_and_extract(URL, "find emails")

    assert len(plain) == 6
    assert {r.metadata.resource_type for r in plain} == {"raw", "cleaned"}
    assert len(titled) == 1
    assert titled[0].metadata.resource_type == "extracted"
    assert titled[0].metadata.extraction_prompt == "get the title"
    assert len(emails) == 1
    assert (await storage.read(emails[0].uri)).text == "a@b.c"
    assert await storage.find_by_url_and_extract(URL, "something else") == []
    assert await storage.find_by_url_and_extract("https://other.example/") == []


@pytest.mark.asyncio
async def test_list_is_newest_first(storage):
    first = await storage.write(URL, "one")
    second = await storage.write(URL, "two")
    third = await storage.write("https://example.com/other", "three")

    listed = await storage.list()

    assert [r.uri for r in listed] == [third, second, first]
    timestamps = [r.metadata.timestamp for r in listed]
    assert timestamps == sorted(timestamps, reverse=True)
    assert len(set(timestamps)) == 3


@pytest.mark.asyncio
async def test_rewrites_never_touch_older_resources(storage):
    first = await storage.write(URL, "version one")
    second = await storage.write(URL, "version two")

    assert first != second
    assert (await storage.read(first)).text == "version one"
    assert (await storage.find_by_url(URL))[0].uri == second


@pytest.mark.asyncio
async def test_caller_cannot_override_url_or_timestamp(storage):
    uri = await storage.write(
        URL,
        "body",
        {"url": "https://spoofed.example/", "timestamp": "1999-01-01T00:00:00+00:00"},
    )

    resource = (await storage.find_by_url(URL))[0]
    assert resource.uri == uri
    assert resource.metadata.url == URL
    assert not resource.metadata.timestamp.startswith("1999")


@pytest.mark.asyncio
async def test_exists_and_delete(storage):
    uri = await storage.write(URL, "body")

    assert await storage.exists(uri) is True
    await storage.delete(uri)
    assert await storage.exists(uri) is False
    assert await storage.list() == []


@pytest.mark.asyncio
async def test_missing_resources_raise_not_found(storage):
    uri = _missing_uri(storage)

    with pytest.raises(ResourceNotFoundError) as exc_info:
        await storage.read(uri)
    assert exc_info.value.uri == uri
    assert str(exc_info.value) == f"Resource not found: {uri}"

    with pytest.raises(ResourceNotFoundError):
        await storage.delete(uri)
    assert await storage.exists(uri) is False


@pytest.mark.asyncio
async def test_memory_uri_format():
    storage = MemoryResourceStorage()

    uri = await storage.write(URL, "body", {"resourceType": "cleaned"})

    assert uri.startswith("memory://cleaned/example.com_test_")
    resource = (await storage.list())[0]
    assert resource.name.startswith("cleaned/example.com_")
    assert resource.mime_type == "text/plain"


@pytest.mark.asyncio
async def test_filesystem_layout_and_sidecar(tmp_path):
    root = tmp_path / "resources"
    storage = FileSystemResourceStorage(root)

    uris = await storage.write_multi(
        MultiResourceWrite(
            url=URL,
            raw="raw body",
            extracted="Title",
            metadata={"extract": "get the title", "source": "native"},
        )
    )

    assert uris.raw.startswith(f"file://{root}/")
    assert uris.raw.endswith(".md")
    content_files = sorted(p.name for p in root.glob("*.md"))
    sidecars = sorted(root.glob("*.meta.json"))
    assert len(content_files) == 2
    assert len(sidecars) == 2

    payloads = {
        payload["resourceType"]: payload
        for payload in (json.loads(path.read_text(encoding="utf-8")) for path in sidecars)
    }
    assert set(payloads) == {"raw", "extracted"}
    assert payloads["extracted"]["url"] == URL
    assert payloads["extracted"]["extractionPrompt"] == "get the title"
    assert "extractionPrompt" not in payloads["raw"]
    assert payloads["raw"]["source"] == "native"
    assert "timestamp" in payloads["raw"]


@pytest.mark.asyncio
async def test_filesystem_survives_new_instance(tmp_path):
    root = tmp_path / "resources"
    uri = await FileSystemResourceStorage(root).write(URL, "persisted")

    reopened = FileSystemResourceStorage(root)

    assert (await reopened.read(uri)).text == "persisted"
    assert [r.uri for r in await reopened.find_by_url(URL)] == [uri]


@pytest.mark.asyncio
async def test_filesystem_skips_corrupt_sidecars(tmp_path):
    root = tmp_path / "resources"
    storage = FileSystemResourceStorage(root)
    good = await storage.write(URL, "good")
    (root / "broken.md").write_text("orphan", encoding="utf-8")
    (root / "broken.meta.json").write_text("{not json", encoding="utf-8")
    (root / "nocontent.meta.json").write_text(json.dumps({"url": URL, "timestamp": "x"}), encoding="utf-8")

    listed = await storage.list()

    assert [r.uri for r in listed] == [good]


@pytest.mark.asyncio
async def test_filesystem_rejects_foreign_uris(tmp_path):
    storage = FileSystemResourceStorage(tmp_path / "resources")

    with pytest.raises(ValueError):
        await storage.read("memory://raw/example.com_1")
    with pytest.raises(ResourceNotFoundError):
        await storage.read(f"file://{tmp_path / 'elsewhere.md'}")


@pytest.mark.asyncio
async def test_filesystem_empty_root_lists_nothing(tmp_path):
    assert await FileSystemResourceStorage(tmp_path / "never-created").list() == []


def test_factory(tmp_path):
    assert isinstance(create_resource_storage(), MemoryResourceStorage)
    fs = create_resource_storage("filesystem", root_dir=tmp_path)
    assert isinstance(fs, FileSystemResourceStorage)
    assert fs.root_dir == tmp_path.absolute()
    with pytest.raises(ValueError):
        create_resource_storage("redis")
