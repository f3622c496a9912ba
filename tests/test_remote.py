import os
import stat
import tempfile
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from providers.interface import SyncToolUnavailable
from providers.rclone_remote import (
    RemoteHandle, RemoteResolver, list_remotes, pick_remote, render_config,
)


class TestPickRemote(unittest.TestCase):
    def test_preferred_remote(self):
        self.assertEqual(pick_remote(["gdrive", "r2prod"], "gdrive"), "gdrive")
        self.assertIsNone(pick_remote(["gdrive"], "missing"))

    def test_r2_like_remote_wins(self):
        self.assertEqual(pick_remote(["gdrive", "Cloudflare-main", "r2"], None), "Cloudflare-main")

    def test_first_remote_fallback(self):
        self.assertEqual(pick_remote(["gdrive", "box"], None), "gdrive")
        self.assertIsNone(pick_remote([], None))

    def test_render_config(self):
        text = render_config("r2", "https://acct.r2.cloudflarestorage.com", "AKID", "SECRET")
        self.assertTrue(text.startswith("[r2]\n"))
        self.assertIn("provider = Cloudflare", text)
        self.assertIn("secret_access_key = SECRET", text)


class TestRemoteResolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _resolver(self, **kwargs):
        kwargs.setdefault("endpoint", "https://acct.r2.cloudflarestorage.com")
        kwargs.setdefault("access_key_id", "AKID")
        kwargs.setdefault("secret_access_key", "SECRET")
        kwargs.setdefault("temp_dir", self.tmp.name)
        kwargs.setdefault("use_existing_remotes", False)
        return RemoteResolver(**kwargs)

    async def test_materialized_config_is_private(self):
        """A temp config is written with owner-only permissions and the access keys."""
        resolver = self._resolver()
        handle = await resolver.resolve()

        self.assertTrue(handle.ephemeral)
        self.assertTrue(os.path.basename(handle.config_path).startswith("rclone-"))
        self.assertEqual(stat.S_IMODE(os.stat(handle.config_path).st_mode), 0o600)
        with open(handle.config_path) as f:
            self.assertIn("access_key_id = AKID", f.read())
        self.assertEqual(handle.base_args, ["--config", handle.config_path])
        resolver.release()

    async def test_resolve_is_cached_until_release(self):
        resolver = self._resolver()
        first = await resolver.resolve()
        self.assertIs(await resolver.resolve(), first)
        resolver.release()
        second = await resolver.resolve()
        self.assertIsNot(second, first)
        resolver.release()

    async def test_invocations_get_distinct_files(self):
        a = await self._resolver().resolve()
        b = await self._resolver().resolve()
        self.assertNotEqual(a.config_path, b.config_path)
        a.release()
        b.release()

    async def test_release_happens_exactly_once(self):
        handle = await self._resolver().resolve()
        self.assertTrue(handle.release())
        self.assertFalse(handle.release())
        self.assertFalse(os.path.exists(handle.config_path))

    async def test_acquire_cleans_up_on_failure(self):
        resolver = self._resolver()
        with self.assertRaises(RuntimeError):
            async with resolver.acquire() as handle:
                path = handle.config_path
                self.assertTrue(os.path.exists(path))
                raise RuntimeError("rclone crashed")
        self.assertFalse(os.path.exists(path))
        self.assertEqual(os.listdir(self.tmp.name), [])

    async def test_failed_write_leaves_no_config_behind(self):
        """A config that cannot be written is removed before the error propagates."""
        resolver = self._resolver()
        with patch("providers.rclone_remote.render_config",
                   side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(OSError):
                await resolver.resolve()
        self.assertEqual(os.listdir(self.tmp.name), [])

    async def test_failed_chmod_leaves_no_config_behind(self):
        resolver = self._resolver()
        with patch("providers.rclone_remote.os.chmod", side_effect=PermissionError("denied")):
            with self.assertRaises(PermissionError):
                await resolver.resolve()
        self.assertEqual(os.listdir(self.tmp.name), [])

    async def test_existing_remote_is_reused(self):
        with patch("providers.rclone_remote.list_remotes",
                   AsyncMock(return_value=["gdrive", "my-r2"])):
            resolver = self._resolver(use_existing_remotes=True)
            async with resolver.acquire() as handle:
                self.assertEqual(handle.name, "my-r2")
                self.assertIsNone(handle.config_path)
                self.assertEqual(handle.base_args, [])
        self.assertEqual(os.listdir(self.tmp.name), [])

    async def test_missing_preferred_remote_falls_back_to_keys(self):
        with patch("providers.rclone_remote.list_remotes", AsyncMock(return_value=["gdrive"])):
            resolver = self._resolver(use_existing_remotes=True, preferred_remote="prod")
            handle = await resolver.resolve()
        self.assertTrue(handle.ephemeral)
        resolver.release()

    async def test_no_remote_and_no_keys(self):
        with patch("providers.rclone_remote.list_remotes", AsyncMock(return_value=[])):
            resolver = self._resolver(use_existing_remotes=True, access_key_id=None)
            with self.assertRaises(SyncToolUnavailable):
                await resolver.resolve()

    def test_non_ephemeral_release_is_noop(self):
        self.assertFalse(RemoteHandle(name="r2").release())


class TestListRemotes(unittest.IsolatedAsyncioTestCase):
    async def test_parses_remote_names(self):
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(b"r2prod:\ngdrive:\n\n", b""))
        with patch("providers.rclone_remote.asyncio.create_subprocess_exec",
                   AsyncMock(return_value=proc)):
            self.assertEqual(await list_remotes(), ["r2prod", "gdrive"])

    async def test_failed_listing_is_empty(self):
        proc = MagicMock(returncode=1)
        proc.communicate = AsyncMock(return_value=(b"", b"config not found"))
        with patch("providers.rclone_remote.asyncio.create_subprocess_exec",
                   AsyncMock(return_value=proc)):
            self.assertEqual(await list_remotes(), [])

    async def test_missing_binary(self):
        with patch("providers.rclone_remote.asyncio.create_subprocess_exec",
                   AsyncMock(side_effect=FileNotFoundError)):
            with self.assertRaises(SyncToolUnavailable):
                await list_remotes("rclone-missing")


if __name__ == '__main__':
    unittest.main()
