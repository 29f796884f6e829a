import pytest

from boat_rag.retrieval.datastore import DatastoreError, InMemoryDatastore, RowQuery


@pytest.mark.asyncio
async def test_select_filters_and_orders(datastore: InMemoryDatastore) -> None:
    rows = await datastore.select(
        "boat_assets",
        RowQuery(ilike_any=[("manufacturer", "garm"), ("model", "newport")], order_by="manufacturer"),
    )

    assert [row["id"] for row in rows] == ["asset-watermaker", "asset-gps"]


@pytest.mark.asyncio
async def test_text_search_and_contains(datastore: InMemoryDatastore) -> None:
    fts = await datastore.select("boat_assets", RowQuery(text_search=("search_text", "gps OR pump")))
    contains = await datastore.select("standards_playbooks", RowQuery(contains=("matchers", ["watermaker"])))

    assert {row["id"] for row in fts} == {"asset-gps", "asset-pump"}
    assert [row["id"] for row in contains] == ["pb-watermaker-filter"]


@pytest.mark.asyncio
async def test_upsert_replaces_and_requires_key() -> None:
    store = InMemoryDatastore()
    await store.upsert("t", {"k": "a", "v": 1}, key="k")
    await store.upsert("t", {"k": "a", "v": 2}, key="k")

    assert store.count("t") == 1
    assert (await store.select("t"))[0]["v"] == 2
    with pytest.raises(DatastoreError):
        await store.upsert("t", {"v": 3}, key="k")


@pytest.mark.asyncio
async def test_delete_by_prefix() -> None:
    store = InMemoryDatastore({"t": [{"k": "sem:a"}, {"k": "sem:b"}, {"k": "other"}]})

    removed = await store.delete("t", RowQuery(prefix=("k", "sem:")))

    assert removed == 2
    assert store.count("t") == 1
