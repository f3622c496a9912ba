import io
import logging
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

import bucket_pruner
from core.listing import ListingEngine
from core.orchestrator import DeletionOrchestrator
from pruner_config import DEFAULT_CONFIG, MissingCredentialsError, StoreCredentials
from providers.r2_api_provider import R2ApiProvider
from providers.rclone_provider import RcloneSyncTool
from providers.rclone_remote import RemoteHandle
from fakes import FakeObjectStore, FakeResolver, FakeSyncTool, InMemoryBucket

FIXTURE = ["presets/a/1.json", "presets/a/sub/2.json", "presets/b/3.json"]


async def no_sleep(_delay):
    return None


class TestCli(unittest.TestCase):
    def setUp(self):
        self.bucket = InMemoryBucket(FIXTURE)
        self.tool = FakeSyncTool(self.bucket)
        self.resolver = FakeResolver()
        self.store = None
        self.listing = None

        patches = [
            patch.object(bucket_pruner, "setup_logger",
                         lambda *a, **k: (logging.getLogger("test_cli"), "logs/test.log")),
            patch.object(bucket_pruner, "load_config", lambda path=None: dict(DEFAULT_CONFIG)),
            patch.object(bucket_pruner, "load_credentials",
                         lambda env, config: StoreCredentials(account_id="acct", bucket="media")),
            patch.object(bucket_pruner, "build_orchestrator", self._orchestrator),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def _orchestrator(self, config, creds, prefer_api=False, on_progress=None):
        return DeletionOrchestrator(self.resolver, creds.bucket, store=self.store,
                                    listing=self.listing,
                                    tool_factory=lambda handle: self.tool)

    def run_main(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = bucket_pruner.main(list(argv))
        return code, out.getvalue()

    def test_requires_something_to_do(self):
        with redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
            with self.assertRaises(SystemExit):
                bucket_pruner.main([])

    def test_dry_run_changes_nothing(self):
        code, out = self.run_main("presets/a", "--dry-run")
        self.assertEqual(code, 0)
        self.assertEqual(self.bucket.snapshot(), sorted(FIXTURE))
        self.assertIn("DRY RUN", out)

    def test_confirmation_declined(self):
        with patch("builtins.input", return_value="yes"):
            code, out = self.run_main("presets/a")
        self.assertEqual(code, 0)
        self.assertIn("cancelled", out)
        self.assertEqual(self.tool.mutating_calls(), [])

    def test_confirmed_delete(self):
        with patch("builtins.input", return_value="DELETE"):
            code, _ = self.run_main("presets/a", "presets/b/*")
        self.assertEqual(code, 0)
        self.assertEqual(self.bucket.snapshot(), [])

    def test_failed_target_exit_code(self):
        self.tool.failures["purge"] = "AccessDenied"
        code, out = self.run_main("presets/a", "--yes")
        self.assertEqual(code, 1)
        self.assertIn("AccessDenied", out)

    def test_discover_folders_only(self):
        code, out = self.run_main("--discover", "presets", "--folders-only", "--yes")
        self.assertEqual(code, 0)
        self.assertIn("Verified folders", out)
        self.assertEqual(self.bucket.snapshot(), [])

    def test_configuration_error(self):
        def fail(env, config):
            raise MissingCredentialsError("Missing bucket")

        with patch.object(bucket_pruner, "load_credentials", fail):
            code, out = self.run_main("presets/a")
        self.assertEqual(code, 1)
        self.assertIn("Missing bucket", out)

    def use_object_api(self, **store_kwargs):
        self.store = FakeObjectStore(self.bucket, **store_kwargs)
        self.listing = ListingEngine(self.store, sleep=no_sleep)

    def test_list_prints_objects_and_json(self):
        self.use_object_api(page_size=2)
        code, out = self.run_main("--list", "presets")

        self.assertEqual(code, 0)
        self.assertIn("Found 3 object(s) in 2 page(s)", out)
        for key in FIXTURE:
            self.assertIn(f"  - {key} (1.00 KB)", out)
        self.assertIn("Full JSON:", out)
        self.assertIn('"key": "presets/a/sub/2.json"', out)
        self.assertIn('"size": 1024', out)
        self.assertTrue(self.store.closed)
        self.assertEqual(self.bucket.snapshot(), sorted(FIXTURE))

    def test_partial_list_exit_code(self):
        """A page that keeps failing makes the listing partial and the exit code non-zero."""
        self.use_object_api(page_size=2, fatal={"c2"})
        code, out = self.run_main("--list", "presets")

        self.assertEqual(code, 1)
        self.assertIn("  - presets/a/1.json (1.00 KB)", out)
        self.assertNotIn("presets/b/3.json (", out)
        self.assertIn("bad cursor c2", out)

    def test_list_requires_api_token(self):
        code, out = self.run_main("--list", "presets")
        self.assertEqual(code, 1)
        self.assertIn("CLOUDFLARE_API_TOKEN", out)

    def test_build_targets(self):
        args = bucket_pruner.argparse.Namespace(
            targets=["a", "b/*"], files_only=False, folders_only=True, dry_run=True)
        targets = bucket_pruner.build_targets(args)
        self.assertEqual([t.path for t in targets], ["a", "b/*"])
        self.assertTrue(all(t.dry_run for t in targets))


class TestBuildOrchestrator(unittest.TestCase):
    """Config values reach the listing engine, resolver and sync tool."""

    def setUp(self):
        self.config = dict(DEFAULT_CONFIG, page_window=5, max_page_attempts=4, retry_base_delay=0.5,
                           max_pages=50, coalesce_cursor_probe=True, rclone_binary="/opt/rclone",
                           rclone_timeout=42, protected_prefixes=["backups"], batch_concurrency=7)

    def test_wiring_with_api_token(self):
        creds = StoreCredentials(account_id="acct", bucket="media", api_token="tok",
                                 access_key_id="AKID", secret_access_key="SECRET", remote_name="prod")
        orchestrator = bucket_pruner.build_orchestrator(self.config, creds, prefer_api=True)
        self.addCleanup(orchestrator.store.close)

        self.assertIsInstance(orchestrator.store, R2ApiProvider)
        self.assertTrue(orchestrator.store.base_url.endswith("/accounts/acct/r2/buckets/media"))
        self.assertEqual(orchestrator.store.session.headers["Authorization"], "Bearer tok")

        listing = orchestrator.listing
        self.assertIs(listing.store, orchestrator.store)
        self.assertEqual(listing.window, 5)
        self.assertEqual(listing.max_attempts, 4)
        self.assertEqual(listing.retry_base_delay, 0.5)
        self.assertEqual(listing.max_pages, 50)
        self.assertTrue(listing.coalesce_cursor_probe)

        resolver = orchestrator.resolver
        self.assertEqual(resolver.binary, "/opt/rclone")
        self.assertEqual(resolver.endpoint, "https://acct.r2.cloudflarestorage.com")
        self.assertEqual(resolver.preferred_remote, "prod")

        tool = orchestrator.tool_factory(RemoteHandle(name="prod"))
        self.assertIsInstance(tool, RcloneSyncTool)
        self.assertEqual(tool.binary, "/opt/rclone")
        self.assertEqual(tool.timeout, 42)
        self.assertEqual(tool.remote_path("presets/a"), "prod:media/presets/a")

        self.assertEqual(orchestrator.safety.protected_prefixes, ["backups"])
        self.assertEqual(orchestrator.batch_concurrency, 7)

    def test_without_api_token_there_is_no_listing(self):
        creds = StoreCredentials(account_id="acct", bucket="media", access_key_id="AKID",
                                 secret_access_key="SECRET")
        orchestrator = bucket_pruner.build_orchestrator(self.config, creds)
        self.assertIsNone(orchestrator.store)
        self.assertIsNone(orchestrator.listing)
        self.assertEqual(orchestrator.tool_factory(RemoteHandle(name="r2")).timeout, 42)


if __name__ == '__main__':
    unittest.main()
