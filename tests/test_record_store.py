import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
for path in (ROOT, SRC):
    if path not in sys.path:
        sys.path.insert(0, path)

from app.stores import MemoryKvStore
from record_store import CrmRecordStore, model_key, slot_key


class TestMemoryKvStore(unittest.TestCase):
    def test_get_put_delete_list(self) -> None:
        kv = MemoryKvStore()
        kv.put("slot:2024-05-01:b", {"id": "b"})
        kv.put("slot:2024-05-01:a", {"id": "a"})
        kv.put("model:x", {"id": "x"})
        self.assertEqual(kv.list("slot:"), ["slot:2024-05-01:a", "slot:2024-05-01:b"])
        self.assertEqual(kv.get("model:x"), {"id": "x"})
        self.assertTrue(kv.delete("model:x"))
        self.assertFalse(kv.delete("model:x"))
        self.assertIsNone(kv.get("model:x"))

    def test_values_are_copied(self) -> None:
        kv = MemoryKvStore()
        doc = {"id": "a", "history": []}
        kv.put("k", doc)
        doc["history"].append("x")
        loaded = kv.get("k")
        loaded["history"].append("y")
        self.assertEqual(kv.get("k"), {"id": "a", "history": []})

    def test_empty_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            MemoryKvStore().put("", {})


class TestCrmRecordStore(unittest.TestCase):
    def setUp(self) -> None:
        self.kv = MemoryKvStore()
        self.records = CrmRecordStore(self.kv)

    def test_key_layout(self) -> None:
        self.records.put_model({"id": "m1"})
        self.records.put_slot({"id": "s1", "date": "2024-05-01"})
        self.assertIsNotNone(self.kv.get(model_key("m1")))
        self.assertIsNotNone(self.kv.get(slot_key("2024-05-01", "s1")))
        self.assertEqual(self.kv.list("slot:"), ["slot:2024-05-01:s1"])

    def test_put_requires_identity(self) -> None:
        with self.assertRaises(ValueError):
            self.records.put_model({"name": "no id"})
        with self.assertRaises(ValueError):
            self.records.put_slot({"id": "s1"})

    def test_find_slot_without_date(self) -> None:
        self.records.put_slot({"id": "s1", "date": "2024-05-01"})
        self.records.put_slot({"id": "s11", "date": "2024-05-02"})
        self.assertEqual(self.records.find_slot("s1")["date"], "2024-05-01")
        self.assertIsNone(self.records.find_slot("missing"))

    def test_list_slots_by_date_and_model(self) -> None:
        self.records.put_slot({"id": "a", "date": "2024-05-01", "start": "12:00", "modelId": "m1"})
        self.records.put_slot({"id": "b", "date": "2024-05-01", "start": "10:00"})
        self.records.put_slot({"id": "c", "date": "2024-05-02", "start": "09:00"})
        self.assertEqual([s["id"] for s in self.records.list_slots("2024-05-01")], ["b", "a"])
        self.assertEqual(len(self.records.list_slots()), 3)
        self.assertEqual([s["id"] for s in self.records.slots_for_model("m1")], ["a"])

    def test_shifts_filtered_by_model(self) -> None:
        self.records.put_shift({"id": "x", "modelId": "m1", "date": "2024-05-02"})
        self.records.put_shift({"id": "y", "modelId": "m2", "date": "2024-05-01"})
        self.assertEqual([s["id"] for s in self.records.list_shifts(model_id="m1")], ["x"])
        self.assertEqual([s["id"] for s in self.records.list_shifts()], ["y", "x"])
        self.assertTrue(self.records.delete_shift("x"))
        self.assertIsNone(self.records.get_shift("x"))

    def test_audit_is_filtered_and_newest_first(self) -> None:
        first = self.records.add_audit("model", "m1", "create", {"name": "A"}, user_id="u1")
        self.records.add_audit("slot", "s1", "create")
        entries = self.records.list_audit(entity_type="model", entity_id="m1")
        self.assertEqual([e["id"] for e in entries], [first["id"]])
        self.assertEqual(entries[0]["details"], {"name": "A"})
        self.assertEqual(len(self.records.list_audit(limit=1)), 1)


if __name__ == "__main__":
    unittest.main()
