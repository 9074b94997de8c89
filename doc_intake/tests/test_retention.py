import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from doc_intake.retention import (
    KeepEverything,
    PurgeAll,
    PurgeScratch,
    get_retention_policy,
    list_retention_policies,
)


class TestRetentionPolicies(unittest.TestCase):
    def test_default_policy_keeps_everything(self):
        self.assertIsInstance(get_retention_policy(None), KeepEverything)
        self.assertIsInstance(get_retention_policy("keep"), KeepEverything)

    def test_purge_scratch_policy_is_selectable(self):
        self.assertIsInstance(get_retention_policy("purge-scratch"), PurgeScratch)

    def test_purge_all_policy_is_selectable(self):
        self.assertIsInstance(get_retention_policy("purge-all"), PurgeAll)
        self.assertEqual(list_retention_policies(), ["keep", "purge-scratch", "purge-all"])

    def test_unknown_policy_lists_available_options(self):
        with self.assertRaises(ValueError) as ctx:
            get_retention_policy("shred")

        for name in list_retention_policies():
            self.assertIn(name, str(ctx.exception))

    def test_keep_everything_leaves_files_alone(self):
        with TemporaryDirectory() as temp_dir:
            scratch = Path(temp_dir) / "tess_abc"
            scratch.mkdir()
            upload = Path(temp_dir) / "upload_1.pdf"
            upload.write_bytes(b"%PDF")

            policy = KeepEverything()
            policy.release_scratch(scratch)
            policy.release_upload(upload)

            self.assertTrue(scratch.exists())
            self.assertTrue(upload.exists())

    def test_purge_scratch_removes_scratch_but_keeps_upload(self):
        with TemporaryDirectory() as temp_dir:
            scratch = Path(temp_dir) / "tess_abc"
            scratch.mkdir()
            (scratch / "page-1.png").write_bytes(b"\x89PNG")
            upload = Path(temp_dir) / "upload_1.pdf"
            upload.write_bytes(b"%PDF")

            policy = PurgeScratch()
            policy.release_scratch(scratch)
            policy.release_upload(upload)

            self.assertFalse(scratch.exists())
            self.assertTrue(upload.exists())

    def test_purge_all_removes_scratch_and_upload(self):
        with TemporaryDirectory() as temp_dir:
            scratch = Path(temp_dir) / "tess_abc"
            scratch.mkdir()
            upload = Path(temp_dir) / "upload_1.pdf"
            upload.write_bytes(b"%PDF")

            policy = PurgeAll()
            policy.release_scratch(scratch)
            policy.release_upload(upload)
            policy.release_upload(upload)

            self.assertFalse(scratch.exists())
            self.assertFalse(upload.exists())


if __name__ == "__main__":
    unittest.main()
