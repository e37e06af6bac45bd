import pytest

from storage import JsonFileStore, SqlDocumentStore, open_store


@pytest.fixture(params=["json", "sql"])
def any_store(request, tmp_path):
    if request.param == "json":
        return JsonFileStore(str(tmp_path / "nested" / "store.json"))
    return SqlDocumentStore("sqlite://")


def test_put_get_replace(any_store):
    assert any_store.get("projects", "p1") is None
    any_store.put("projects", "p1", {"id": "p1", "name": "a"})
    any_store.put("projects", "p1", {"id": "p1", "name": "b"})
    assert any_store.get("projects", "p1") == {"id": "p1", "name": "b"}


def test_collections_are_separate(any_store):
    any_store.put("users", "x", {"id": "x"})
    assert any_store.get("projects", "x") is None
    assert any_store.all("projects") == []


def test_delete(any_store):
    any_store.put("users", "u1", {"id": "u1"})
    assert any_store.delete("users", "u1") is True
    assert any_store.delete("users", "u1") is False
    assert any_store.get("users", "u1") is None


def test_find_by_fields(any_store):
    any_store.put("projects", "a", {"id": "a", "userId": "u1"})
    any_store.put("projects", "b", {"id": "b", "userId": "u2"})
    any_store.put("projects", "c", {"id": "c", "userId": "u1"})
    found = sorted(d["id"] for d in any_store.find("projects", userId="u1"))
    assert found == ["a", "c"]


def test_update_applies_function_atomically(any_store):
    def bump(doc):
        return {"count": (doc or {}).get("count", 0) + 1}

    assert any_store.update("guest_usage", "g1", bump) == {"count": 1}
    assert any_store.update("guest_usage", "g1", bump) == {"count": 2}
    assert any_store.get("guest_usage", "g1") == {"count": 2}


def test_update_writes_nothing_when_function_raises(any_store):
    any_store.put("users", "u1", {"credits": 1})

    def refuse(doc):
        raise ValueError("no")

    with pytest.raises(ValueError):
        any_store.update("users", "u1", refuse)
    with pytest.raises(ValueError):
        any_store.update("users", "u2", refuse)
    assert any_store.get("users", "u1") == {"credits": 1}
    assert any_store.get("users", "u2") is None


def test_json_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "store.json")
    JsonFileStore(path).put("users", "u1", {"id": "u1"})
    assert JsonFileStore(path).get("users", "u1") == {"id": "u1"}


def test_sql_store_persists_across_instances(tmp_path):
    url = f"sqlite:///{tmp_path / 'app.db'}"
    SqlDocumentStore(url).put("users", "u1", {"id": "u1", "tags": ["a"]})
    assert SqlDocumentStore(url).get("users", "u1") == {"id": "u1", "tags": ["a"]}


def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store({"DATABASE_URL": None, "STORAGE_PATH": str(tmp_path / "s.json")}), JsonFileStore)
    assert isinstance(open_store({"DATABASE_URL": "sqlite://", "STORAGE_PATH": "unused"}), SqlDocumentStore)
