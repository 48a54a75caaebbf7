import tempfile
import unittest
from pathlib import Path

from playground_runner.workspace import WorkspaceManager


class WorkspaceManagerTests(unittest.TestCase):
    def test_create_is_unique_and_cleanup_tolerates_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            manager = WorkspaceManager(Path(tmp) / "ws")
            first = manager.create("pda-vault")
            second = manager.create("pda-vault")
            self.assertNotEqual(first, second)
            self.assertTrue(first.name.startswith("pda-vault-"))
            (first / "target").mkdir()
            (first / "target" / "x.so").write_bytes(b"\x00")

            manager.cleanup(first)
            self.assertFalse(first.exists())
            manager.cleanup(first)
            self.assertTrue(second.is_dir())


if __name__ == "__main__":
    unittest.main()
