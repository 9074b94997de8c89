import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from doc_intake.errors import TaxonomyIOFailure
from doc_intake.taxonomy_store import DEFAULT_TYPES, TaxonomyStore, TypeEntry, find_type


class TestTaxonomyStore(unittest.TestCase):
    def setUp(self):
        self._temp_dir = TemporaryDirectory()
        self.types_path = Path(self._temp_dir.name) / "types.json"
        self.store = TaxonomyStore(self.types_path)

    def tearDown(self):
        self._temp_dir.cleanup()

    def test_seeds_default_types_on_first_read(self):
        entries = self.store.read_all()

        self.assertEqual([entry.name for entry in entries], ["report", "invoice", "presentation"])
        self.assertEqual(entries[1].description, "Счёт на оплату")
        stored = json.loads(self.types_path.read_text(encoding="utf-8"))
        self.assertEqual(stored, [entry.to_dict() for entry in DEFAULT_TYPES])

    def test_does_not_overwrite_existing_file(self):
        self.types_path.write_text(
            json.dumps([{"name": "contract", "description": "Договор"}]),
            encoding="utf-8",
        )

        entries = self.store.read_all()

        self.assertEqual(entries, [TypeEntry(name="contract", description="Договор")])

    def test_append_preserves_insertion_order(self):
        self.store.append_if_absent("contract", "Договор")
        entries = self.store.append_if_absent("memo", None)

        self.assertEqual(
            [entry.name for entry in entries],
            ["report", "invoice", "presentation", "contract", "memo"],
        )
        self.assertEqual(entries[-1].description, "")

    def test_confirming_the_same_type_twice_stores_one_entry(self):
        self.store.append_if_absent("contract", "Договор")
        self.store.append_if_absent("contract", "Другое описание")

        entries = self.store.read_all()
        contracts = [entry for entry in entries if entry.name == "contract"]
        self.assertEqual(len(contracts), 1)
        self.assertEqual(contracts[0].description, "Договор")

    def test_append_compares_names_case_sensitively(self):
        entries = self.store.append_if_absent("Invoice", "Upper-case variant")

        self.assertEqual([entry.name for entry in entries].count("invoice"), 1)
        self.assertEqual([entry.name for entry in entries].count("Invoice"), 1)

    def test_unreadable_file_raises_taxonomy_failure(self):
        self.types_path.write_text("{not json", encoding="utf-8")

        with self.assertRaises(TaxonomyIOFailure):
            self.store.read_all()

    def test_non_list_file_raises_taxonomy_failure(self):
        self.types_path.write_text(json.dumps({"name": "invoice"}), encoding="utf-8")

        with self.assertRaises(TaxonomyIOFailure):
            self.store.read_all()


class TestFindType(unittest.TestCase):
    def test_lookup_ignores_case(self):
        entries = [TypeEntry(name="Invoice", description="Счёт на оплату")]

        found = find_type(entries, "invoice")

        self.assertIsNotNone(found)
        self.assertEqual(found.description, "Счёт на оплату")

    def test_lookup_returns_none_for_unknown_type(self):
        self.assertIsNone(find_type(list(DEFAULT_TYPES), "receipt"))


if __name__ == "__main__":
    unittest.main()
