import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

WILDCARD = "*"


class DeletionMode(Enum):
    RECURSIVE = "recursive"
    FILES_ONLY = "files-only"
    FOLDERS_ONLY = "folders-only"


@dataclass(frozen=True)
class DeletionTarget:
    path: str
    mode: DeletionMode = DeletionMode.RECURSIVE
    dry_run: bool = False

    @classmethod
    def from_arg(cls, raw: str, files_only: bool = False, folders_only: bool = False,
                 dry_run: bool = False) -> "DeletionTarget":
        """A trailing wildcard always means files-only."""
        path = raw.strip().lstrip("/")
        if path.endswith(WILDCARD):
            return cls(path, DeletionMode.FILES_ONLY, dry_run)
        if files_only:
            return cls(f"{path.rstrip('/')}/{WILDCARD}", DeletionMode.FILES_ONLY, dry_run)
        if folders_only:
            return cls(path.rstrip("/"), DeletionMode.FOLDERS_ONLY, dry_run)
        return cls(path.rstrip("/"), DeletionMode.RECURSIVE, dry_run)

    @property
    def base_path(self) -> str:
        """Path with any wildcard marker and trailing slash removed."""
        path = self.path
        if path.endswith(WILDCARD):
            path = path[:-1]
        return path.rstrip("/")


@dataclass
class FolderCandidate:
    path: str
    verified: bool = False


@dataclass
class BatchResult:
    deleted: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class DeletionResult:
    """
    Per-target accounting. Steps only ever add to it.
    """
    path: str
    mode: DeletionMode
    dry_run: bool = False
    deleted_count: int = 0
    failed_count: int = 0
    errors: List[str] = field(default_factory=list)
    scanned: List[str] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    duration: float = 0.0

    def add_deleted(self, count: int):
        self.deleted_count += count

    def add_error(self, message: str):
        self.failed_count += 1
        self.errors.append(message)

    def add_batch(self, batch: BatchResult):
        self.deleted_count += batch.deleted
        self.failed_count += batch.failed
        self.errors.extend(batch.errors)

    def skip(self, reason: str):
        self.skipped = True
        self.skip_reason = reason

    def finish(self) -> "DeletionResult":
        self.duration = time.time() - self.started_at
        return self

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


@dataclass
class RunSummary:
    results: List[DeletionResult] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    duration: float = 0.0

    def add(self, result: DeletionResult):
        self.results.append(result)

    def finish(self) -> "RunSummary":
        self.duration = time.time() - self.started_at
        return self

    @property
    def deleted(self) -> int:
        return sum(r.deleted_count for r in self.results)

    @property
    def failed(self) -> int:
        return sum(r.failed_count for r in self.results)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed_targets(self) -> List[DeletionResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed_targets

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
