import asyncio
import logging
import re
from typing import Iterable, List, Optional, Sequence

from providers.interface import ISyncTool, SyncCommandError, SyncStatus
from .types import FolderCandidate

logger = logging.getLogger("folder_classifier")

DEFAULT_FILE_EXTENSIONS = ("webp", "png", "json", "jpg", "jpeg", "gif", "pdf", "txt", "zip")


def extension_pattern(extensions: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(ext.lower().lstrip(".")) for ext in extensions)
    return re.compile(rf"\.({alternatives})$", re.IGNORECASE)


def looks_like_file(path: str, extensions: Sequence[str] = DEFAULT_FILE_EXTENSIONS) -> bool:
    """
    True when the last path segment ends in a known file extension.
    A directory literally named e.g. 'archive.zip' is reported as a file;
    drop the extension from the configured list to opt out.
    """
    last = path.rstrip("/").split("/")[-1]
    if not last or "." not in last or not extensions:
        return False
    return bool(extension_pattern(extensions).search(last))


def normalize_dir_path(line: str, base: str) -> str:
    """Resolve a sync-tool listing line to a bucket-relative folder path."""
    path = line.strip().rstrip("/").lstrip("/")
    base = base.strip("/")
    if not base:
        return path
    if path == base or path.startswith(base + "/"):
        return path
    return f"{base}/{path}"


def find_nested_duplicates(keys: Iterable[str], base: str) -> List[str]:
    """Prefixes of the form base/X/X that hold at least one key."""
    base = base.strip("/")
    pattern = re.compile(rf"^{re.escape(base)}/([^/]+)/\1/")
    found = set()
    for key in keys:
        match = pattern.match(key)
        if match:
            name = match.group(1)
            found.add(f"{base}/{name}/{name}")
    return sorted(found)


class FolderClassifier:
    """
    Two-phase folder discovery: a directories-only scan proposes
    candidates, then each candidate is verified by a shallow listing that
    must contain at least one leaf object.
    """

    def __init__(self, sync_tool: ISyncTool,
                 file_extensions: Optional[Sequence[str]] = None,
                 verify_concurrency: int = 4):
        self.sync_tool = sync_tool
        self.file_extensions = tuple(DEFAULT_FILE_EXTENSIONS if file_extensions is None else file_extensions)
        self.verify_concurrency = verify_concurrency

    def is_file_like(self, path: str) -> bool:
        return looks_like_file(path, self.file_extensions)

    async def candidate_folders(self, base: str) -> List[str]:
        result = await self.sync_tool.list_dirs(base)
        if result.status == SyncStatus.NOT_FOUND:
            logger.info(f"Base folder {base!r} not found")
            return []
        if result.status == SyncStatus.ERROR:
            raise SyncCommandError(f"Failed to list folders under {base!r}: {result.message}")

        logger.debug(f"[lsf] Received {len(result.lines)} folder lines")
        candidates = set()
        for line in result.lines:
            path = normalize_dir_path(line, base)
            if not path or self.is_file_like(path):
                continue
            candidates.add(path)
        return sorted(candidates)

    async def verify_folder(self, path: str) -> bool:
        """At least one depth-1 entry under path/ that is not a subdirectory."""
        result = await self.sync_tool.list_shallow(path.rstrip("/") + "/")
        if result.status == SyncStatus.ERROR:
            logger.warning(f"Verification listing failed for {path}: {result.message}")
            return False
        return any(not line.endswith("/") for line in result.lines)

    async def classify(self, base: str) -> List[FolderCandidate]:
        paths = await self.candidate_folders(base)
        semaphore = asyncio.Semaphore(self.verify_concurrency)

        async def verify_with_semaphore(path: str) -> FolderCandidate:
            async with semaphore:
                return FolderCandidate(path=path, verified=await self.verify_folder(path))

        candidates = await asyncio.gather(*(verify_with_semaphore(p) for p in paths))
        return sorted(candidates, key=lambda c: c.path)

    async def discover_folders(self, base: str) -> List[str]:
        candidates = await self.classify(base)
        verified = [c.path for c in candidates if c.verified]
        logger.info(f"Discovered {len(verified)} verified folder(s) of {len(candidates)} candidate(s) under {base!r}")
        return verified
