from abc import ABC, abstractmethod
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Optional, List, Dict, Union

# stderr fragments the sync utility emits when the target is already gone
NOT_FOUND_MARKERS = (
    "not found",
    "directory not found",
    "couldn't find",
    "is a file not a directory",
    "not a directory",
    "no matching objects",
    "no files found",
)


@dataclass(frozen=True)
class ObjectEntry:
    key: str
    size: int = 0
    last_modified: Optional[str] = None
    etag: Optional[str] = None

    @classmethod
    def from_api(cls, item: Union[str, Dict[str, Any]]) -> "ObjectEntry":
        # The list API occasionally returns bare key strings
        if isinstance(item, str):
            return cls(key=item)
        return cls(
            key=item.get("key") or item.get("Key") or "",
            size=int(item.get("size") or 0),
            last_modified=item.get("last_modified") or item.get("uploaded"),
            etag=(item.get("etag") or "").strip('"') or None,
        )

    @property
    def is_marker(self) -> bool:
        return self.key.endswith("/")


@dataclass
class Page:
    entries: List[ObjectEntry] = field(default_factory=list)
    cursor: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return not self.cursor


class SyncStatus(Enum):
    OK = auto()
    NOT_FOUND = auto()
    ERROR = auto()


@dataclass
class SyncResult:
    """
    Outcome of one sync-utility invocation.
    OK carries stdout lines, NOT_FOUND means the target was already absent,
    ERROR carries the stderr message.
    """
    status: SyncStatus
    lines: List[str] = field(default_factory=list)
    message: str = ""
    returncode: int = 0

    @classmethod
    def from_process(cls, returncode: int, stdout: str, stderr: str) -> "SyncResult":
        lines = [line.strip() for line in stdout.splitlines() if line.strip()]
        if returncode == 0:
            return cls(SyncStatus.OK, lines, stderr.strip(), returncode)
        # rclone prints 'Config file "..." not found - using defaults' whenever
        # the remote comes from env vars; that line must not match "not found"
        lowered = "\n".join(line for line in stderr.lower().splitlines()
                            if "config file" not in line)
        if any(marker in lowered for marker in NOT_FOUND_MARKERS):
            return cls(SyncStatus.NOT_FOUND, [], stderr.strip(), returncode)
        return cls(SyncStatus.ERROR, [], stderr.strip() or f"exit code {returncode}", returncode)

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.OK

    @property
    def succeeded(self) -> bool:
        """OK or already absent; both count as success for deletes."""
        return self.status in (SyncStatus.OK, SyncStatus.NOT_FOUND)


class IObjectStore(ABC):
    """
    Abstract Base Class for the object-store API.
    Keys are bucket-relative; markers end in '/'.
    """

    @abstractmethod
    async def list_page(self, prefix: str, cursor: Optional[str] = None) -> Page:
        """Fetch one page of objects under prefix."""
        pass

    @abstractmethod
    async def delete_object(self, key: str) -> bool:
        """Delete a single key. Missing keys count as deleted."""
        pass


class ISyncTool(ABC):
    """
    Abstract Base Class for the external sync utility.
    Paths are bucket-relative without a leading slash.
    """

    @abstractmethod
    async def list_dirs(self, path: str) -> SyncResult:
        """Recursive directories-only listing."""
        pass

    @abstractmethod
    async def list_shallow(self, path: str) -> SyncResult:
        """Depth-1 listing; directories end in '/'."""
        pass

    @abstractmethod
    async def list_files(self, path: str, recursive: bool = True) -> SyncResult:
        """Files-only listing."""
        pass

    @abstractmethod
    async def delete(self, path: str, max_depth: Optional[int] = None,
                     include: Optional[str] = None, exclude: Optional[str] = None,
                     dry_run: bool = False) -> SyncResult:
        """Delete files under path matching the filters. Directories are kept."""
        pass

    @abstractmethod
    async def purge(self, path: str, dry_run: bool = False) -> SyncResult:
        """Remove path and everything under it."""
        pass

    @abstractmethod
    async def rmdirs(self, path: str, dry_run: bool = False) -> SyncResult:
        """Remove empty directory markers under path."""
        pass

    @abstractmethod
    async def delete_file(self, path: str, dry_run: bool = False) -> SyncResult:
        """Remove a single object by exact key."""
        pass


class ObjectStoreError(Exception):
    def __init__(self, message: str, status: Optional[int] = None,
                 errors: Optional[List[Dict[str, Any]]] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.errors = errors or []
        self.retryable = retryable


class RateLimitError(ObjectStoreError):
    def __init__(self, message: str, status: Optional[int] = None,
                 errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, status=status, errors=errors, retryable=True)


class SyncToolUnavailable(Exception):
    pass


class SyncCommandError(Exception):
    pass
