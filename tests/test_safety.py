import unittest
from core.types import DeletionMode, DeletionTarget, DeletionResult, RunSummary
from core.safety import SafetyMonitor, SafetyException

class TestSafetyMonitor(unittest.TestCase):
    def setUp(self):
        # Monitor with one protected area
        self.monitor = SafetyMonitor(protected_prefixes=["/backups/", "", "site/live"])

    def _target(self, raw, **kwargs):
        return DeletionTarget.from_arg(raw, **kwargs)

    def test_safe_target(self):
        """Verify an ordinary folder passes."""
        self.assertTrue(self.monitor.check_target(self._target("presets/abc")))
        self.assertTrue(self.monitor.check_target(self._target("presets/abc/*")))

    def test_bucket_root_blocked(self):
        """Verify empty and bare-wildcard targets are refused in every mode."""
        for raw, kwargs in (("", {}), ("/", {}), ("*", {}), ("/", {"folders_only": True})):
            with self.assertRaises(SafetyException):
                self.monitor.check_target(self._target(raw, **kwargs))

    def test_protected_prefix(self):
        """Verify the protected prefix, anything inside it, and its parents are refused."""
        for raw in ("backups", "backups/2024", "backups/*", "site", "site/live/index"):
            with self.assertRaises(SafetyException):
                self.monitor.check_target(self._target(raw))

    def test_similar_names_not_protected(self):
        """Verify prefix matching is per path segment."""
        self.assertFalse(self.monitor.is_protected("backups-old"))
        self.assertFalse(self.monitor.is_protected("site/lively"))

    def test_inner_wildcard_blocked(self):
        with self.assertRaises(SafetyException):
            self.monitor.check_target(DeletionTarget("presets/*/cache", DeletionMode.RECURSIVE))

    def test_empty_protected_entries_ignored(self):
        self.assertEqual(self.monitor.protected_prefixes, ["backups", "site/live"])


class TestDeletionTarget(unittest.TestCase):
    def test_trailing_wildcard_is_files_only(self):
        target = DeletionTarget.from_arg("presets/abc/*", folders_only=True)
        self.assertEqual(target.mode, DeletionMode.FILES_ONLY)
        self.assertEqual(target.base_path, "presets/abc")

    def test_files_only_flag_appends_wildcard(self):
        target = DeletionTarget.from_arg("presets/abc/", files_only=True)
        self.assertEqual(target.path, "presets/abc/*")

    def test_folders_only_and_default(self):
        self.assertEqual(DeletionTarget.from_arg("/presets/abc/", folders_only=True),
                         DeletionTarget("presets/abc", DeletionMode.FOLDERS_ONLY))
        self.assertEqual(DeletionTarget.from_arg("presets/abc").mode, DeletionMode.RECURSIVE)


class TestResults(unittest.TestCase):
    def test_summary_exit_code(self):
        summary = RunSummary()
        ok = DeletionResult("a", DeletionMode.RECURSIVE)
        ok.add_deleted(3)
        skipped = DeletionResult("b", DeletionMode.FOLDERS_ONLY)
        skipped.skip("no files")
        summary.add(ok)
        summary.add(skipped)
        self.assertEqual(summary.exit_code, 0)

        failed = DeletionResult("c", DeletionMode.RECURSIVE)
        failed.add_error("purge failed")
        summary.add(failed)
        self.assertEqual(summary.exit_code, 1)
        self.assertEqual(summary.deleted, 3)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.skipped, 1)

if __name__ == '__main__':
    unittest.main()
