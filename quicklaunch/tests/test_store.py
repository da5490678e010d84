"""Tests for the DuckDB backend store."""

import pytest

from quicklaunch.daemon.error_handling import StoreError
from quicklaunch.daemon.models import AppInfo
from quicklaunch.daemon.store import DuckDBStore


@pytest.fixture
async def duck(tmp_path):
    store = DuckDBStore(tmp_path / "data" / "launcher.duckdb")
    await store.initialize()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_add_use_inserts_then_increments(duck):
    await duck.add_use("C:\\Apps\\Tool.exe")
    await duck.add_use("c:/apps/tool.exe")

    entries = await duck.list_all_history()

    assert len(entries) == 1
    assert entries[0].use_count == 2
    # First-seen spelling is kept
    assert entries[0].path == "C:\\Apps\\Tool.exe"
    assert entries[0].name == "Tool.exe"
    assert entries[0].last_used > 0


@pytest.mark.asyncio
async def test_history_ordered_by_last_use(duck):
    await duck.add_use("/a")
    await duck.add_use("/b")
    await duck.add_use("/a")

    entries = await duck.list_all_history()

    assert [e.path for e in entries] == ["/a", "/b"]


@pytest.mark.asyncio
async def test_url_entries(duck):
    await duck.add_use("https://example.com/page")

    entry = (await duck.list_all_history())[0]

    assert entry.name == "example.com"
    assert entry.is_folder is False


@pytest.mark.asyncio
async def test_folder_detection(duck, tmp_path):
    folder = tmp_path / "docs"
    folder.mkdir()

    await duck.add_use(str(folder))

    assert (await duck.list_all_history())[0].is_folder is True


@pytest.mark.asyncio
async def test_delete_history(duck):
    await duck.add_use("/a")

    await duck.delete_history("/A")

    assert await duck.list_all_history() == []
    with pytest.raises(StoreError):
        await duck.delete_history("/a")


@pytest.mark.asyncio
async def test_app_index(duck):
    await duck.upsert_app(AppInfo(name="Zed", path="C:\\zed.exe"))
    await duck.upsert_app(AppInfo(name="Atom", path="C:\\atom.exe", name_pinyin="atom"))
    await duck.upsert_app(AppInfo(name="Atom Editor", path="c:/ATOM.exe"))

    apps = await duck.list_apps()

    assert [a.name for a in apps] == ["Atom Editor", "Zed"]

    await duck.remove_from_index("C:\\ZED.exe")
    assert [a.name for a in await duck.list_apps()] == ["Atom Editor"]

    with pytest.raises(StoreError):
        await duck.remove_from_index("C:\\zed.exe")


@pytest.mark.asyncio
async def test_empty_path_rejected(duck):
    with pytest.raises(StoreError):
        await duck.add_use("   ")


@pytest.mark.asyncio
async def test_uninitialized_store_raises(tmp_path):
    store = DuckDBStore(tmp_path / "x.duckdb")
    with pytest.raises(StoreError):
        await store.list_all_history()


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path):
    path = tmp_path / "launcher.duckdb"
    store = DuckDBStore(path)
    await store.initialize()
    await store.add_use("/persisted.txt")
    await store.close()

    reopened = DuckDBStore(path)
    await reopened.initialize()
    try:
        entries = await reopened.list_all_history()
    finally:
        await reopened.close()

    assert [e.path for e in entries] == ["/persisted.txt"]
