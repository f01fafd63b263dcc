from lyricflow.storage import LOCAL_SONGS_KEY, LocalStore, is_local_id


def test_missing_key_reads_as_none(store):
    assert store.get_item("nothing") is None


def test_missing_collection_reads_as_empty(store):
    assert store.read_collection(LOCAL_SONGS_KEY) == []


def test_set_then_get(store):
    store.set_item("k", {"a": 1})
    assert store.get_item("k") == {"a": 1}


def test_values_survive_a_new_store_instance(tmp_path):
    LocalStore(tmp_path).write_collection("songs", [{"id": "local_1"}])
    assert LocalStore(tmp_path).read_collection("songs") == [{"id": "local_1"}]


def test_one_file_per_key(store):
    store.set_item("alpha", 1)
    store.set_item("beta", 2)
    assert sorted(p.name for p in store.store_dir.iterdir()) == ["alpha.json", "beta.json"]


def test_collection_is_rewritten_whole(store):
    store.write_collection("songs", [{"id": "1"}, {"id": "2"}])
    store.write_collection("songs", [{"id": "3"}])
    assert store.read_collection("songs") == [{"id": "3"}]


def test_remove_item(store):
    store.set_item("k", "v")
    store.remove_item("k")
    assert store.get_item("k") is None


def test_remove_missing_item_is_a_no_op(store):
    store.remove_item("never-set")


def test_local_id_detection():
    assert is_local_id("local_1700000000000_abc123")
    assert not is_local_id("65a1f0c2e4b0a1b2c3d4e5f6")
    assert not is_local_id("")
    assert not is_local_id(None)
