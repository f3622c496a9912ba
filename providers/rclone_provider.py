import asyncio
import logging
from typing import List, Optional

from .interface import ISyncTool, SyncResult, SyncStatus, SyncToolUnavailable
from .rclone_remote import RemoteHandle

logger = logging.getLogger("rclone_provider")


class RcloneSyncTool(ISyncTool):
    def __init__(self, handle: RemoteHandle, bucket: str,
                 binary: str = "rclone", timeout: float = 600.0):
        self.handle = handle
        self.bucket = bucket.strip("/")
        self.binary = binary
        self.timeout = timeout

    def remote_path(self, path: str) -> str:
        clean = path.lstrip("/")
        if clean:
            return f"{self.handle.name}:{self.bucket}/{clean}"
        return f"{self.handle.name}:{self.bucket}"

    def build_args(self, *args: str, dry_run: bool = False) -> List[str]:
        argv = [self.binary, *self.handle.base_args, *args]
        if dry_run:
            argv.append("--dry-run")
        return argv

    async def _run(self, argv: List[str]) -> SyncResult:
        logger.debug(f"[rclone] {' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SyncToolUnavailable(f"{self.binary} is not installed or not in PATH") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return SyncResult(SyncStatus.ERROR, message=f"timed out after {self.timeout:.0f}s", returncode=-1)

        result = SyncResult.from_process(proc.returncode, stdout.decode(errors="replace"),
                                         stderr.decode(errors="replace"))
        if result.status == SyncStatus.ERROR:
            logger.debug(f"[rclone] exit {proc.returncode}: {result.message[:500]}")
        return result

    async def list_dirs(self, path: str) -> SyncResult:
        return await self._run(self.build_args(
            "lsf", "--fast-list", "--dirs-only", "-R", self.remote_path(path)))

    async def list_shallow(self, path: str) -> SyncResult:
        return await self._run(self.build_args(
            "lsf", "--max-depth", "1", self.remote_path(path)))

    async def list_files(self, path: str, recursive: bool = True) -> SyncResult:
        args = ["lsf", "--files-only"]
        if recursive:
            args.append("-R")
        else:
            args.extend(["--max-depth", "1"])
        return await self._run(self.build_args(*args, self.remote_path(path)))

    async def delete(self, path: str, max_depth: Optional[int] = None,
                     include: Optional[str] = None, exclude: Optional[str] = None,
                     dry_run: bool = False) -> SyncResult:
        args = ["delete", self.remote_path(path)]
        if max_depth is not None:
            args.extend(["--max-depth", str(max_depth)])
        if exclude:
            args.extend(["--exclude", exclude])
        if include:
            args.extend(["--include", include])
        return await self._run(self.build_args(*args, dry_run=dry_run))

    async def purge(self, path: str, dry_run: bool = False) -> SyncResult:
        return await self._run(self.build_args(
            "purge", self.remote_path(path.rstrip("/")), dry_run=dry_run))

    async def rmdirs(self, path: str, dry_run: bool = False) -> SyncResult:
        return await self._run(self.build_args(
            "rmdirs", self.remote_path(path.rstrip("/")), dry_run=dry_run))

    async def delete_file(self, path: str, dry_run: bool = False) -> SyncResult:
        return await self._run(self.build_args(
            "deletefile", self.remote_path(path), dry_run=dry_run))
