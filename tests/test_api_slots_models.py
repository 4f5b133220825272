import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["CRM_DISABLE_AUTH"] = "1"

import app.main as main


class TestSlotModelSync(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def _create_slot(self, title: str = "Anna", **extra) -> dict:
        payload = {"date": "2024-06-01", "start": "10:00", "end": "11:00", "title": title, "status1": "not_confirmed", **extra}
        res = self.client.post("/slots", json=payload)
        body = res.json()
        self.assertEqual(res.status_code, 201, body)
        return body["slot"]

    def _register(self, slot: dict) -> dict:
        res = self.client.post("/models", json={"action": "registerFromSlot", "slotId": slot["id"], "date": slot["date"]})
        body = res.json()
        self.assertEqual(res.status_code, 201, body)
        return body

    def test_model_status_change_reaches_slot(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        self.assertEqual(model["status4"], "registration")
        self.assertEqual(model["status"], "registered")

        res = self.client.put(f"/models/{model['id']}", json={"status1": "confirmed"})
        self.assertTrue(res.json()["ok"], res.json())
        self.assertEqual(res.json()["warnings"], [])

        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_after["status1"], "confirmed")
        syncs = [e for e in slot_after["history"] if e["type"] == "status_sync_from_model"]
        self.assertEqual(len(syncs), 1)
        self.assertEqual(syncs[0]["changes"], {"status1": {"from": "not_confirmed", "to": "confirmed"}})

    def test_relinking_slot_moves_back_reference(self) -> None:
        slot = self._create_slot(title="Olga")
        first = self._register(slot)["model"]
        second = self.client.post("/models", json={"name": "Olga K"}).json()["model"]

        res = self.client.put(f"/slots/{slot['date']}/{slot['id']}", json={"modelId": second["id"]})
        self.assertTrue(res.json()["ok"], res.json())
        self.assertEqual(res.json()["warnings"], [])

        first_after = self.client.get(f"/models/{first['id']}").json()["model"]
        self.assertIsNone(first_after["registration"]["slotRef"])
        unlinked = [e for e in first_after["history"] if e["type"] == "slot_unlinked"]
        self.assertEqual(unlinked[-1]["reason"], "slot_relinked")
        second_after = self.client.get(f"/models/{second['id']}").json()["model"]
        self.assertEqual(second_after["registration"]["slotRef"]["id"], slot["id"])

        self.client.put(f"/models/{first['id']}", json={"status1": "fail"})
        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_after["modelId"], second["id"])
        self.assertEqual(slot_after["status1"], "not_confirmed")

        self.client.put(f"/models/{second['id']}", json={"status1": "confirmed"})
        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_after["status1"], "confirmed")
        self.assertEqual(slot_after["history"][-1]["model"], {"id": second["id"]})

    def test_unlinking_slot_clears_back_reference(self) -> None:
        slot = self._create_slot(title="Ilze")
        model = self._register(slot)["model"]
        self.client.put(f"/slots/{slot['date']}/{slot['id']}", json={"modelId": None})
        model_after = self.client.get(f"/models/{model['id']}").json()["model"]
        self.assertIsNone(model_after["registration"]["slotRef"])

    def test_register_from_slot_links_both_sides(self) -> None:
        slot = self._create_slot(title="Maria", dataBlock={"model_data": [{"field": "phone", "value": "+371 200"}]})
        body = self._register(slot)
        model = body["model"]
        self.assertEqual(model["name"], "Maria")
        self.assertEqual(model["contacts"]["phone"], "+371 200")
        self.assertEqual(model["registration"]["slotRef"]["id"], slot["id"])
        self.assertIn("name_sync_from_slot", [e["type"] for e in model["history"]])
        linked = body["slot"]
        self.assertEqual(linked["modelId"], model["id"])
        self.assertEqual(linked["status4"], "registration")
        self.assertEqual(linked["history"][-1]["type"], "model_linked")

        again = self.client.post("/models", json={"action": "registerFromSlot", "slotId": slot["id"], "date": slot["date"]})
        self.assertEqual(again.status_code, 409)

    def test_register_requires_existing_slot(self) -> None:
        res = self.client.post("/models", json={"action": "registerFromSlot", "slotId": "nope", "date": "2024-06-01"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "SLOT_NOT_FOUND")
        res = self.client.post("/models", json={"action": "registerFromSlot"})
        self.assertEqual(res.status_code, 400)

    def test_slot_update_propagates_status_and_data(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        res = self.client.put(
            f"/slots/{slot['date']}/{slot['id']}",
            json={"status2": "arrived", "dataBlock": {"model_data": [{"field": "fullName", "value": "Anna Smith"}]}},
        )
        self.assertTrue(res.json()["ok"], res.json())
        updated = self.client.get(f"/models/{model['id']}").json()["model"]
        self.assertEqual(updated["status2"], "arrived")
        self.assertEqual(updated["fullName"], "Anna Smith")
        types = [e["type"] for e in updated["history"]]
        self.assertEqual(types.count("status_sync_from_slot"), 1)
        self.assertIn("data_sync_from_slot", types)

    def test_unchanged_update_writes_no_history(self) -> None:
        slot = self._create_slot()
        before = len(slot["history"])
        res = self.client.put(f"/slots/{slot['date']}/{slot['id']}", json={"status1": "not_confirmed", "title": "Anna"})
        self.assertEqual(len(res.json()["slot"]["history"]), before)

    def test_invalid_status_rejected_on_write(self) -> None:
        slot = self._create_slot()
        res = self.client.put(f"/slots/{slot['date']}/{slot['id']}", json={"status1": "maybe"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "STATUS_INVALID")
        res = self.client.post("/slots", json={"date": "2024-06-01", "start": "09:00", "status2": "late"})
        self.assertEqual(res.status_code, 400)

    def test_reads_normalize_stored_statuses(self) -> None:
        main.records.put_slot({"id": "legacy1", "date": "2024-06-02", "status1": "OK", "status2": "bogus", "history": []})
        slot = self.client.get("/slots/2024-06-02/legacy1").json()["slot"]
        self.assertEqual(slot["status1"], "not_confirmed")
        self.assertNotIn("status2", slot)
        listed = self.client.get("/slots", params={"date": "2024-06-02"}).json()["slots"]
        self.assertEqual([s["id"] for s in listed], ["legacy1"])

    def test_model_rename_retitles_slot(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        self.client.put(f"/models/{model['id']}", json={"name": "Anna Smith"})
        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_after["title"], "Anna Smith")
        self.assertEqual(slot_after["history"][-1]["type"], "title_sync_from_model")

    def test_slot_time_change_refreshes_snapshot(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        self.client.put(f"/slots/{slot['date']}/{slot['id']}", json={"start": "15:00", "end": "16:00"})
        ref = self.client.get(f"/models/{model['id']}").json()["model"]["registration"]["slotRef"]
        self.assertEqual((ref["start"], ref["end"]), ("15:00", "16:00"))

    def test_delete_model_unlinks_slot(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        res = self.client.delete(f"/models/{model['id']}")
        self.assertTrue(res.json()["deleted"])
        self.assertEqual(self.client.get(f"/models/{model['id']}").status_code, 404)
        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertIsNone(slot_after["modelId"])

    def test_delete_slot_unlinks_model(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        self.client.delete(f"/slots/{slot['date']}/{slot['id']}")
        updated = self.client.get(f"/models/{model['id']}").json()["model"]
        self.assertIsNone(updated["registration"]["slotRef"])
        self.assertEqual(self.client.get(f"/slots/{slot['date']}/{slot['id']}").status_code, 404)

    def test_explicit_model_to_slot_data_sync(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        self.client.put(f"/models/{model['id']}", json={"dataBlock": {"model_data": [{"field": "telegram", "value": "@anna"}]}})
        slot_before = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_before["data_block"]["model_data"], [])
        res = self.client.post(f"/models/{model['id']}/sync-slot")
        self.assertTrue(res.json()["synced"], res.json())
        slot_after = self.client.get(f"/slots/{slot['date']}/{slot['id']}").json()["slot"]
        self.assertEqual(slot_after["data_block"]["model_data"], [{"field": "telegram", "value": "@anna"}])

    def test_standalone_model_and_comments(self) -> None:
        res = self.client.post("/models", json={"name": "  Lena ", "status1": "confirmed"})
        self.assertEqual(res.status_code, 201, res.json())
        model = res.json()["model"]
        self.assertEqual(model["name"], "Lena")
        self.assertEqual(model["status"], "registered")
        self.assertEqual(self.client.post("/models", json={}).status_code, 400)
        comment = self.client.post(f"/models/{model['id']}/comments", json={"text": "called back"}).json()["comment"]
        stored = self.client.get(f"/models/{model['id']}").json()["model"]
        self.assertEqual(stored["comments"][-1]["id"], comment["id"])
        self.assertEqual(self.client.post(f"/models/{model['id']}/comments", json={"text": " "}).status_code, 400)

    def test_audit_trail(self) -> None:
        slot = self._create_slot()
        model = self._register(slot)["model"]
        entries = self.client.get("/audit", params={"entityType": "model", "entityId": model["id"]}).json()["entries"]
        self.assertEqual([e["action"] for e in entries], ["register_from_slot"])
        slot_entries = self.client.get("/audit", params={"entityType": "slot", "entityId": slot["id"]}).json()["entries"]
        self.assertEqual({e["action"] for e in slot_entries}, {"create", "link"})

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})


if __name__ == "__main__":
    unittest.main()
