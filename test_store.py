from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from usersk7.errors import StoreError
from usersk7.records import Record
from usersk7.store import InMemoryRecordStore, JsonFileRecordStore, RecordStore


class InMemoryStoreTests(unittest.TestCase):
    def test_create_assigns_sequential_ids_and_normalizes_key(self):
        store = InMemoryRecordStore()
        self.assertEqual(1, store.create(Record(key="Alice")))
        self.assertEqual(2, store.create(Record(key="bob")))
        found = store.find_by_key("ALICE")
        self.assertIsNotNone(found)
        self.assertEqual(1, found.id)
        self.assertEqual("alice", found.record.key)
        self.assertIsNone(store.find_by_key("nobody"))
        self.assertIsInstance(store, RecordStore)

    def test_duplicate_and_empty_keys_rejected(self):
        store = InMemoryRecordStore([Record(key="alice")])
        with self.assertRaises(StoreError):
            store.create(Record(key="alice"))
        with self.assertRaises(StoreError):
            store.create(Record(key="  "))

    def test_update_keeps_metadata(self):
        store = InMemoryRecordStore([Record(key="alice", email="old@example.com", metadata={"nickname": "al"})])
        store.update(1, Record(key="alice", email="new@example.com", metadata={"ignored": True}))
        rec = store.get(1)
        self.assertEqual("new@example.com", rec.email)
        self.assertEqual({"nickname": "al"}, rec.metadata)

    def test_update_unknown_id(self):
        with self.assertRaises(StoreError):
            InMemoryRecordStore().update(99, Record(key="x"))

    def test_set_metadata_and_clear_roles(self):
        store = InMemoryRecordStore(
            [Record(key="alice", metadata={"capabilities": {"editor": True}, "nickname": "al"})]
        )
        store.clear_roles(1)
        self.assertEqual({"capabilities": {}, "nickname": "al"}, store.get(1).metadata)
        store.set_metadata(1, "capabilities", {"subscriber": True})
        store.set_metadata(1, "theme", "dark")
        self.assertEqual(
            {"capabilities": {"subscriber": True}, "nickname": "al", "theme": "dark"},
            store.get(1).metadata,
        )
        with self.assertRaises(StoreError):
            store.set_metadata(5, "k", "v")

    def test_records_in_id_order(self):
        store = InMemoryRecordStore([Record(key="b"), Record(key="a"), Record(key="c")])
        self.assertEqual(["b", "a", "c"], [r.key for r in store.records()])


class JsonFileStoreTests(unittest.TestCase):
    def test_save_and_reload(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            store = JsonFileRecordStore(path)
            self.assertEqual(0, len(store))
            store.create(Record(key="alice", credential_hash="h", metadata={"capabilities": {"admin": True}}))
            store.create(Record(key="bob", credential_hash="h2"))
            store.save()

            again = JsonFileRecordStore(path)
            self.assertEqual(["alice", "bob"], [r.key for r in again.records()])
            self.assertEqual({"capabilities": {"admin": True}}, again.find_by_key("alice").record.metadata)
            self.assertEqual(3, again.create(Record(key="carol")))

    def test_plain_list_file_accepted(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            path.write_text(json.dumps([{"key": "x"}, {"user_login": "y"}]), encoding="utf-8")
            store = JsonFileRecordStore(path)
            self.assertEqual(2, store.find_by_key("y").id)

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            path.write_text("{nope", encoding="utf-8")
            with self.assertRaises(StoreError):
                JsonFileRecordStore(path)

    def test_duplicate_keys_in_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            path.write_text(json.dumps([{"key": "x"}, {"key": "X"}]), encoding="utf-8")
            with self.assertRaises(StoreError):
                JsonFileRecordStore(path)

    def test_duplicate_ids_in_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            rows = [{"id": 1, "record": {"key": "a"}}, {"id": 1, "record": {"key": "b"}}]
            path.write_text(json.dumps(rows), encoding="utf-8")
            with self.assertRaises(StoreError) as ctx:
                JsonFileRecordStore(path)
            self.assertIn("duplicate id", str(ctx.exception))

    def test_invalid_ids_in_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "store.json"
            for bad in (None, "one", [1]):
                path.write_text(json.dumps({"records": [{"id": bad, "record": {"key": "a"}}]}), encoding="utf-8")
                with self.assertRaises(StoreError):
                    JsonFileRecordStore(path)


if __name__ == "__main__":
    unittest.main()
