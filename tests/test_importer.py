# tests/test_importer.py
import itertools

import pytest

from workbench.errors import InvalidImportError
from workbench.importer import merge_snapshot, parse_snapshot, unique_collection_name
from workbench.schemas import Collection, Environment, RequestConfig


def counter_ids():
    counter = itertools.count(1)
    return lambda: f"new-{next(counter)}"


def api_collection(cid="incoming-1", name="API"):
    return Collection(id=cid, name=name, requests=[
        RequestConfig(id="r1", name="one", collection_id="somewhere-else"),
        RequestConfig(id="r2", name="two"),
    ])


def test_unique_collection_name():
    assert unique_collection_name("API", []) == "API"
    assert unique_collection_name("API", ["API"]) == "API (1)"
    assert unique_collection_name("API", ["API", "API (1)", "API (2)"]) == "API (3)"
    assert unique_collection_name("API (1)", ["API (1)"]) == "API (1) (1)"


def test_merge_uniquifies_against_existing_and_batch():
    existing = [Collection(id="c0", name="API")]
    collections, _, _ = merge_snapshot(
        existing, [], [],
        [api_collection("a"), api_collection("b")], [], [],
        replace_existing=False, id_factory=counter_ids(),
    )
    assert [c.name for c in collections] == ["API", "API (1)", "API (2)"]


def test_merging_twice_keeps_counting():
    ids = counter_ids()
    collections = [Collection(id="c0", name="API")]
    collections, _, _ = merge_snapshot(collections, [], [], [api_collection()], [], [], False, id_factory=ids)
    collections, _, _ = merge_snapshot(collections, [], [], [api_collection()], [], [], False, id_factory=ids)
    assert sorted(c.name for c in collections) == ["API", "API (1)", "API (2)"]


def test_merge_assigns_fresh_ids_and_keeps_incoming_collection_reference():
    existing = [Collection(id="c0", name="Mine")]
    collections, _, _ = merge_snapshot(
        existing, [], [], [api_collection("incoming-1")], [], [], False, id_factory=counter_ids(),
    )
    assert collections[0] is existing[0]
    merged = collections[1]
    assert merged.id == "new-1"
    assert [r.id for r in merged.requests] == ["new-2", "new-3"]
    # requests point at the id the collection had in the import file
    assert {r.collection_id for r in merged.requests} == {"incoming-1"}


def test_merge_concatenates_history_and_environments(history_item):
    old_h, new_h = history_item("old"), history_item("new")
    old_e, new_e = Environment(id="e1", name="dev"), Environment(id="e1", name="dev")
    _, history, environments = merge_snapshot(
        [], [old_h], [old_e], [], [new_h], [new_e], replace_existing=False,
    )
    assert history == [old_h, new_h]
    assert environments == [old_e, new_e]


def test_replace_normalizes_collection_ids(history_item):
    h = history_item("x")
    collections, history, environments = merge_snapshot(
        [Collection(id="c0", name="API")], [history_item("old")], [Environment(name="old")],
        [api_collection("incoming-1")], [h], [],
        replace_existing=True,
    )
    assert [c.id for c in collections] == ["incoming-1"]
    assert [c.name for c in collections] == ["API"]
    assert [r.id for r in collections[0].requests] == ["r1", "r2"]
    assert {r.collection_id for r in collections[0].requests} == {"incoming-1"}
    assert history == [h]
    assert environments == []


def test_parse_snapshot_tolerates_missing_fields():
    snapshot = parse_snapshot('{"collections": [{"id": "c1", "name": "API", "requests": []}]}')
    assert [c.name for c in snapshot.collections] == ["API"]
    assert snapshot.history is None
    assert snapshot.environments is None


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"collections": [{"id": "c1"}]}', '"text"'])
def test_parse_snapshot_rejects_bad_input(raw):
    with pytest.raises(InvalidImportError):
        parse_snapshot(raw)
