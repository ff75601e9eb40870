"""Tests for local key-value storage."""

from waxradio.services.local_storage import InMemoryKeyValueStore, JsonFileKeyValueStore


class TestJsonFileKeyValueStore:
    """Tests for the JSON file store."""

    def test_missing_file_reads_as_empty(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path / "missing.json"))
        assert store.get("anything") is None

    def test_set_get_remove(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path / "state" / "local.json"))

        store.set("waxradio-onboarding-completed", "uid-alice")
        assert store.get("waxradio-onboarding-completed") == "uid-alice"

        store.remove("waxradio-onboarding-completed")
        assert store.get("waxradio-onboarding-completed") is None

    def test_survives_restart(self, tmp_path):
        path = str(tmp_path / "local.json")
        JsonFileKeyValueStore(path).set("key", "value")
        assert JsonFileKeyValueStore(path).get("key") == "value"

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "local.json"
        path.write_text("{not json")
        store = JsonFileKeyValueStore(str(path))

        assert store.get("key") is None
        store.set("key", "value")
        assert store.get("key") == "value"

    def test_remove_missing_key(self, tmp_path):
        path = tmp_path / "local.json"
        store = JsonFileKeyValueStore(str(path))
        store.remove("key")
        assert not path.exists()


class TestInMemoryKeyValueStore:
    def test_initial_values_are_copied(self):
        initial = {"key": "value"}
        store = InMemoryKeyValueStore(initial)
        store.set("key", "other")
        assert initial["key"] == "value"
        assert store.get("key") == "other"
        store.remove("key")
        assert store.get("key") is None
