import json

import pytest

from storefront_crawler.export.base import MemorySink
from storefront_crawler.export.buffer import OutputBuffer, PROCESSED_IDS_KEY, ProcessedIdSet
from storefront_crawler.export.csv_exporter import CSVExporter
from storefront_crawler.export.json_exporter import JSONLinesExporter
from storefront_crawler.storage.key_value import JsonKeyValueStore, MemoryKeyValueStore
from storefront_crawler.storage.request_queue import MemoryRequestQueue


def test_processed_ids_round_trip_through_the_store():
    store = MemoryKeyValueStore({PROCESSED_IDS_KEY: {"123": True, "456": False}})
    processed = ProcessedIdSet.load(store)
    assert not processed.should_emit("123")
    assert processed.should_emit("456")

    assert processed.claim("789") is True
    assert processed.claim("789") is False
    processed.save()
    assert store.get_value(PROCESSED_IDS_KEY) == {"123": True, "789": True}


def test_malformed_processed_ids_start_empty():
    processed = ProcessedIdSet.load(MemoryKeyValueStore({PROCESSED_IDS_KEY: ["123"]}))
    assert len(processed) == 0


def test_buffer_flushes_in_one_write_at_capacity():
    sink = MemorySink()
    buffer = OutputBuffer(sink, capacity=3)
    for i in range(7):
        buffer.push({"i": i})
    assert sink.writes == 2
    assert len(buffer) == 1
    assert buffer.flush() == 1
    assert buffer.flush() == 0
    assert [item["i"] for item in sink.items] == list(range(7))
    assert sink.writes == 3


def test_unbuffered_writes_go_straight_to_the_sink():
    sink = MemorySink()
    buffer = OutputBuffer(sink, capacity=100, enabled=False)
    buffer.push({"a": 1})
    buffer.push(None)
    assert sink.items == [{"a": 1}]
    assert buffer.pushed == 1


def test_buffer_rejects_zero_capacity():
    with pytest.raises(ValueError):
        OutputBuffer(MemorySink(), capacity=0)


def test_json_store_persists_between_instances(tmp_path):
    JsonKeyValueStore(tmp_path / "kv").set_value("STATS", {"count": 2})
    assert JsonKeyValueStore(tmp_path / "kv").get_value("STATS") == {"count": 2}
    assert JsonKeyValueStore(tmp_path / "kv").get_value("MISSING", {}) == {}
    with pytest.raises(ValueError):
        JsonKeyValueStore(tmp_path).set_value("../escape", 1)


def test_request_queue_dedupes_and_counts_handled():
    queue = MemoryRequestQueue()
    assert queue.add_request("https://shop.example/sitemap.xml") is True
    assert queue.add_request("https://shop.example/sitemap.xml") is False
    assert queue.handled_count() == 0
    queue.mark_handled("https://shop.example/sitemap.xml")
    assert queue.handled_count() == 1


def test_file_exporters_append(tmp_path):
    jsonl = JSONLinesExporter(str(tmp_path / "out" / "items.jsonl"))
    jsonl.push([{"id": "1"}, {"id": "2"}])
    jsonl.push({"id": "3"})
    lines = (tmp_path / "out" / "items.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == ["1", "2", "3"]

    csv_path = tmp_path / "items.csv"
    exporter = CSVExporter(str(csv_path))
    exporter.push([{"id": "1", "title": "Shirt", "images_urls": ["a.jpg"]}, {"#failed": {"url": "x"}}])
    exporter.push({"id": "2", "title": "Jeans"})
    rows = csv_path.read_text(encoding="utf-8").splitlines()
    assert rows[0].startswith("id,url,title")
    assert len(rows) == 3
    assert '"[""a.jpg""]"' in rows[1]


def test_discard_releases_a_claim():
    processed = ProcessedIdSet(MemoryKeyValueStore())
    assert processed.claim("123")
    processed.discard("123")
    processed.discard("never-claimed")
    assert processed.claim("123") is True


def test_failed_flush_keeps_items_for_the_next_attempt():
    class FlakySink(MemorySink):
        fail = True

        def push(self, items):
            if self.fail:
                raise OSError("disk full")
            super().push(items)

    sink = FlakySink()
    buffer = OutputBuffer(sink, capacity=10)
    buffer.push({"i": 0})
    buffer.push({"i": 1})
    with pytest.raises(OSError):
        buffer.flush()
    assert len(buffer) == 2
    assert buffer.pushed == 0

    sink.fail = False
    assert buffer.flush() == 2
    assert [item["i"] for item in sink.items] == [0, 1]
