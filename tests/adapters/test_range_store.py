from __future__ import annotations

from gopcache.infra.db import get_engine
from gopcache.infra.range_store import RangeStore, range_key


class TestRangeStore:
    def setup_method(self):
        self.store = RangeStore(get_engine("sqlite:///:memory:"))

    def teardown_method(self):
        self.store.dispose()

    def test_key_format(self):
        assert range_key("https://a/b.mp4", 0, 4194304) == "https://a/b.mp4:0-4194304"

    def test_put_get(self):
        assert self.store.get("u", 0, 4) is None
        self.store.put("u", 0, 4, b"abcd")
        assert self.store.get("u", 0, 4) == b"abcd"

    def test_put_overwrites(self):
        self.store.put("u", 0, 4, b"abcd")
        self.store.put("u", 0, 4, b"wxyz")
        assert self.store.get("u", 0, 4) == b"wxyz"
        assert self.store.stats()["count"] == 1

    def test_stats_and_clear(self):
        self.store.put("a", 0, 4, b"abcd")
        self.store.put("a", 4, 6, b"ef")
        self.store.put("b", 0, 1, b"z")
        assert self.store.stats() == {"count": 3, "size": 7, "urls": ["a", "b"]}

        assert self.store.clear("a") == 2
        assert self.store.stats()["urls"] == ["b"]
        assert self.store.clear() == 1
        assert self.store.stats() == {"count": 0, "size": 0, "urls": []}

    def test_file_database(self, tmp_path):
        store = RangeStore.from_url(f"sqlite:///{tmp_path / 'nested' / 'ranges.db'}")
        store.put("u", 0, 2, b"hi")
        store.dispose()
        reopened = RangeStore.from_url(f"sqlite:///{tmp_path / 'nested' / 'ranges.db'}")
        assert reopened.get("u", 0, 2) == b"hi"
        reopened.dispose()
