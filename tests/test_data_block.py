import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from staffing.data_block import (
    STANDARD_MODEL_FIELDS,
    data_block_changed,
    extract_model_fields_from_data_block,
    merge_data_blocks,
    normalize_data_block,
)


def _values(block: dict) -> dict:
    return {item["field"]: item["value"] for item in block["model_data"]}


class TestNormalizeDataBlock(unittest.TestCase):
    def test_malformed_input_becomes_empty_block(self) -> None:
        for raw in (None, "x", 5, [], {"model_data": "nope", "forms": {}, "edit_history": None}):
            block = normalize_data_block(raw)
            self.assertEqual(block["model_data"], [])
            self.assertEqual(block["forms"], [])
            self.assertEqual(block["edit_history"], [])
            self.assertIsNone(block["user_id"])

    def test_field_names_are_strings_and_entries_without_field_dropped(self) -> None:
        block = normalize_data_block({"model_data": [{"field": 7, "value": "a"}, {"value": "orphan"}, "junk"]})
        self.assertEqual(block["model_data"], [{"field": "7", "value": "a"}])

    def test_repeated_field_keeps_last_value(self) -> None:
        block = normalize_data_block({"model_data": [{"field": "phone", "value": "1"}, {"field": "x", "value": 0}, {"field": "phone", "value": "2"}]})
        self.assertEqual(block["model_data"], [{"field": "phone", "value": "2"}, {"field": "x", "value": 0}])


class TestMergeDataBlocks(unittest.TestCase):
    def test_repeated_merge_is_idempotent_except_forms(self) -> None:
        dst = {"model_data": [{"field": "fullName", "value": "Anna"}], "forms": [{"id": "f0"}]}
        src = {"model_data": [{"field": "phone", "value": "+371"}], "forms": [{"id": "f1"}], "user_id": "u1"}
        once = merge_data_blocks(dst, src)
        twice = merge_data_blocks(once, src)
        self.assertEqual(once["model_data"], twice["model_data"])
        self.assertEqual(len(once["edit_history"]), 1)
        self.assertEqual(len(twice["edit_history"]), 1)
        self.assertEqual(twice["forms"], [{"id": "f0"}, {"id": "f1"}, {"id": "f1"}])

    def test_merge_never_removes_destination_fields(self) -> None:
        dst = {"model_data": [{"field": "fullName", "value": "Anna"}, {"field": "telegram", "value": "@anna"}]}
        src = {"model_data": [{"field": "docType", "value": "passport"}]}
        merged = merge_data_blocks(dst, src)
        self.assertEqual(_values(merged), {"fullName": "Anna", "telegram": "@anna", "docType": "passport"})
        self.assertEqual([item["field"] for item in merged["model_data"]], ["fullName", "telegram", "docType"])

    def test_changed_value_is_recorded_with_old_and_new(self) -> None:
        dst = {"model_data": [{"field": "phone", "value": "1"}]}
        src = {"model_data": [{"field": "phone", "value": "2"}, {"field": "telegram", "value": "@a"}]}
        merged = merge_data_blocks(dst, src, edited_by="editor")
        changes = [entry["changes"] for entry in merged["edit_history"]]
        self.assertEqual(changes, [
            {"field": "phone", "old_value": "1", "new_value": "2"},
            {"field": "telegram", "old_value": None, "new_value": "@a"},
        ])
        self.assertEqual({entry["user_id"] for entry in merged["edit_history"]}, {"editor"})
        self.assertEqual(len({entry["edited_at"] for entry in merged["edit_history"]}), 1)

    def test_equal_structured_values_are_not_changes(self) -> None:
        dst = {"model_data": [{"field": "address", "value": {"city": "Riga", "zip": "1010"}}]}
        src = {"model_data": [{"field": "address", "value": {"zip": "1010", "city": "Riga"}}]}
        self.assertEqual(merge_data_blocks(dst, src)["edit_history"], [])

    def test_integral_float_resubmission_is_not_a_change(self) -> None:
        dst = {"model_data": [{"field": "height", "value": 170}]}
        src = {"model_data": [{"field": "height", "value": 170.0}]}
        self.assertEqual(merge_data_blocks(dst, src)["edit_history"], [])

    def test_record_edit_false_skips_history(self) -> None:
        merged = merge_data_blocks({}, {"model_data": [{"field": "phone", "value": "1"}]}, record_edit=False)
        self.assertEqual(merged["edit_history"], [])
        self.assertEqual(_values(merged), {"phone": "1"})

    def test_user_id_resolution(self) -> None:
        merged = merge_data_blocks({"user_id": "dst"}, {"model_data": [{"field": "a", "value": 1}]})
        self.assertEqual(merged["user_id"], "dst")
        self.assertEqual(merged["edit_history"][0]["user_id"], "dst")
        merged = merge_data_blocks({"user_id": "dst"}, {"user_id": "src", "model_data": [{"field": "a", "value": 1}]})
        self.assertEqual(merged["user_id"], "src")
        self.assertEqual(merged["edit_history"][0]["user_id"], "src")
        merged = merge_data_blocks(None, {"model_data": [{"field": "a", "value": 1}]})
        self.assertIsNone(merged["edit_history"][0]["user_id"])

    def test_existing_history_is_kept(self) -> None:
        dst = {"edit_history": [{"edited_at": "2024-01-01T00:00:00Z", "user_id": "u", "changes": {"field": "a", "old_value": None, "new_value": 1}}]}
        merged = merge_data_blocks(dst, {"model_data": [{"field": "b", "value": 2}]})
        self.assertEqual(len(merged["edit_history"]), 2)
        self.assertEqual(merged["edit_history"][0]["edited_at"], "2024-01-01T00:00:00Z")

    def test_inputs_are_not_mutated(self) -> None:
        dst = {"model_data": [{"field": "a", "value": [1]}]}
        src = {"model_data": [{"field": "a", "value": [2]}]}
        merge_data_blocks(dst, src)
        self.assertEqual(dst, {"model_data": [{"field": "a", "value": [1]}]})


class TestExtractModelFields(unittest.TestCase):
    def test_absent_fields_are_none(self) -> None:
        fields = extract_model_fields_from_data_block({"model_data": [{"field": "fullName", "value": "Anna K"}, {"field": "hobby", "value": "chess"}]})
        self.assertEqual(set(fields), set(STANDARD_MODEL_FIELDS))
        self.assertEqual(fields["fullName"], "Anna K")
        self.assertIsNone(fields["phone"])
        self.assertNotIn("hobby", fields)

    def test_malformed_block(self) -> None:
        self.assertEqual(extract_model_fields_from_data_block("garbage"), {name: None for name in STANDARD_MODEL_FIELDS})

    def test_data_block_changed(self) -> None:
        before = {"model_data": [{"field": "a", "value": 1}]}
        self.assertFalse(data_block_changed(before, merge_data_blocks(before, before)))
        self.assertTrue(data_block_changed(before, merge_data_blocks(before, {"model_data": [{"field": "a", "value": 2}]})))
        self.assertTrue(data_block_changed(before, merge_data_blocks(before, {"forms": [{"id": "f"}]})))


if __name__ == "__main__":
    unittest.main()
