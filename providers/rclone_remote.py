import asyncio
import logging
import os
import secrets
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .interface import SyncToolUnavailable

logger = logging.getLogger("rclone_remote")

REMOTE_HINTS = ("r2", "cloudflare")
EPHEMERAL_REMOTE = "r2"


@dataclass
class RemoteHandle:
    """
    An rclone remote the sync tool can address.
    Ephemeral handles own a temp config file holding the access keys.
    """
    name: str
    config_path: Optional[str] = None
    ephemeral: bool = False
    released: bool = field(default=False, compare=False)

    @property
    def base_args(self) -> List[str]:
        if self.config_path:
            return ["--config", self.config_path]
        return []

    def release(self) -> bool:
        """Delete the owned config file. Returns True only on the call that removed it."""
        if not self.ephemeral or self.released:
            return False
        self.released = True
        try:
            os.remove(self.config_path)
            logger.debug(f"Removed temporary rclone config {self.config_path}")
            return True
        except FileNotFoundError:
            return False


def render_config(name: str, endpoint: str, access_key_id: str, secret_access_key: str) -> str:
    return (
        f"[{name}]\n"
        "type = s3\n"
        "provider = Cloudflare\n"
        f"access_key_id = {access_key_id}\n"
        f"secret_access_key = {secret_access_key}\n"
        f"endpoint = {endpoint}\n"
    )


async def list_remotes(binary: str = "rclone") -> List[str]:
    try:
        proc = await asyncio.create_subprocess_exec(
            binary, "listremotes",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise SyncToolUnavailable(f"{binary} is not installed or not in PATH") from e
    stdout, _ = await proc.communicate()
    if proc.returncode != 0:
        return []
    return [line.strip().rstrip(":") for line in stdout.decode().splitlines() if line.strip()]


def pick_remote(remotes: List[str], preferred: Optional[str] = None) -> Optional[str]:
    if preferred:
        return preferred if preferred in remotes else None
    for remote in remotes:
        if any(hint in remote.lower() for hint in REMOTE_HINTS):
            return remote
    return remotes[0] if remotes else None


class RemoteResolver:
    """
    Produces the RemoteHandle for one invocation.

    A configured rclone remote is reused when one exists; otherwise a
    temporary config is written from the access keys. The handle is created
    lazily and cached until release().
    """

    def __init__(self, endpoint: Optional[str] = None,
                 access_key_id: Optional[str] = None,
                 secret_access_key: Optional[str] = None,
                 preferred_remote: Optional[str] = None,
                 binary: str = "rclone",
                 temp_dir: Optional[str] = None,
                 use_existing_remotes: bool = True):
        self.endpoint = endpoint
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.preferred_remote = preferred_remote
        self.binary = binary
        self.temp_dir = temp_dir
        self.use_existing_remotes = use_existing_remotes
        self._handle: Optional[RemoteHandle] = None

    @property
    def has_access_keys(self) -> bool:
        return bool(self.endpoint and self.access_key_id and self.secret_access_key)

    async def resolve(self) -> RemoteHandle:
        if self._handle and not self._handle.released:
            return self._handle

        if self.use_existing_remotes:
            remote = pick_remote(await list_remotes(self.binary), self.preferred_remote)
            if remote:
                logger.info(f"Using configured rclone remote '{remote}'")
                self._handle = RemoteHandle(name=remote)
                return self._handle

        if not self.has_access_keys:
            raise SyncToolUnavailable("No rclone remote configured and R2 access keys not provided")

        self._handle = self._materialize()
        return self._handle

    def _materialize(self) -> RemoteHandle:
        # Namespaced per invocation so concurrent runs never share a file
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        prefix = f"rclone-{stamp}-{secrets.token_hex(4)}-"
        fd, path = tempfile.mkstemp(prefix=prefix, suffix=".conf", dir=self.temp_dir)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(render_config(EPHEMERAL_REMOTE, self.endpoint,
                                      self.access_key_id, self.secret_access_key))
            os.chmod(path, 0o600)
        except Exception:
            # a half-written config may already hold the secret key
            os.remove(path)
            raise
        logger.debug(f"Wrote temporary rclone config {path}")
        return RemoteHandle(name=EPHEMERAL_REMOTE, config_path=path, ephemeral=True)

    def release(self):
        if self._handle:
            self._handle.release()
            self._handle = None

    @asynccontextmanager
    async def acquire(self):
        """Yield a handle and release any ephemeral artifact afterwards, on success or failure."""
        handle = await self.resolve()
        try:
            yield handle
        finally:
            self.release()
