import json

import pytest

from casekeeper.storage.errors import QuotaExceededError
from casekeeper.storage.local_store import LocalStore


def _store(tmp_path, quota=1000):
    return LocalStore(tmp_path / "local_storage.json", quota_chars=quota)


def test_values_persist_across_reopen(tmp_path):
    store = _store(tmp_path)
    store.set_item("caseCounter", "7")
    store.set_items({"a": "1", "b": "مصاريف"})

    reopened = _store(tmp_path)
    assert reopened.get_item("caseCounter") == "7"
    assert reopened.get_item("b") == "مصاريف"
    assert reopened.used_chars == store.used_chars == len("caseCounter7") + 2 + 7
    assert list(reopened) == ["a", "b", "caseCounter"]


def test_quota_rejection_leaves_store_unchanged(tmp_path):
    store = _store(tmp_path, quota=20)
    store.set_item("k", "v" * 10)
    before = (tmp_path / "local_storage.json").read_text(encoding="utf-8")

    with pytest.raises(QuotaExceededError) as excinfo:
        store.set_items({"x": "1", "big": "z" * 30})

    assert excinfo.value.backend == "primary"
    assert store.get_item("x") is None
    assert store.used_chars == 11
    assert (tmp_path / "local_storage.json").read_text(encoding="utf-8") == before


def test_overwrite_counts_only_the_difference(tmp_path):
    store = _store(tmp_path, quota=20)
    store.set_item("k", "v" * 15)
    store.set_item("k", "w" * 19)
    assert store.used_chars == 20
    assert store.available_chars == 0


def test_remove_item_and_prefix_listing(tmp_path):
    store = _store(tmp_path)
    store.set_items({"doc_data_1_a": "x", "doc_data_1_b": "y", "docs_list_1": "[]"})

    assert store.keys("doc_data_") == ["doc_data_1_a", "doc_data_1_b"]
    assert store.remove_item("doc_data_1_a") is True
    assert store.remove_item("doc_data_1_a") is False
    assert "doc_data_1_a" not in store
    assert len(store) == 2


def test_corrupt_file_is_set_aside(tmp_path):
    path = tmp_path / "local_storage.json"
    path.write_text("{not json", encoding="utf-8")

    store = LocalStore(path)

    assert len(store) == 0
    assert list(tmp_path.glob("local_storage.json.corrupt-*"))
    store.set_item("k", "v")
    assert json.loads(path.read_text(encoding="utf-8"))["items"] == {"k": "v"}
