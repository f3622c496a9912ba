import logging
from typing import Callable, Iterable, List, Optional, Sequence

from logger_setup import log_exception
from providers.interface import (
    IObjectStore, ISyncTool, ObjectStoreError, SyncCommandError, SyncStatus,
)
from providers.rclone_provider import RcloneSyncTool
from providers.rclone_remote import RemoteHandle, RemoteResolver
from .batch import ProgressCallback, delete_many
from .classify import FolderClassifier, find_nested_duplicates
from .listing import ListingEngine
from .safety import SafetyMonitor
from .types import DeletionMode, DeletionResult, DeletionTarget, RunSummary

logger = logging.getLogger("deletion_orchestrator")

ToolFactory = Callable[[RemoteHandle], ISyncTool]


class DeletionOrchestrator:
    """
    Runs the per-mode deletion protocol for one target at a time.

    RECURSIVE:    scan -> purge -> rmdirs -> marker delete (API) -> marker delete (sync tool)
    FILES_ONLY:   scan depth 1 -> delete depth-1 files, directories excluded
    FOLDERS_ONLY: extension guard -> verify -> scan -> delete files -> purge -> rmdirs

    Dry-run performs every scan and verification and passes --dry-run to
    each mutating sync-tool call; object-API deletes are not issued.
    """

    def __init__(self, resolver: RemoteResolver, bucket: str,
                 store: Optional[IObjectStore] = None,
                 tool_factory: Optional[ToolFactory] = None,
                 safety: Optional[SafetyMonitor] = None,
                 listing: Optional[ListingEngine] = None,
                 file_extensions: Optional[Sequence[str]] = None,
                 verify_concurrency: int = 4,
                 batch_concurrency: int = 10,
                 batch_delay: float = 0.05,
                 prefer_api_for_recursive: bool = False,
                 on_progress: Optional[ProgressCallback] = None):
        self.resolver = resolver
        self.bucket = bucket
        self.store = store
        self.tool_factory = tool_factory or (lambda handle: RcloneSyncTool(handle, bucket))
        self.safety = safety or SafetyMonitor()
        self.listing = listing or (ListingEngine(store) if store else None)
        self.file_extensions = file_extensions
        self.verify_concurrency = verify_concurrency
        self.batch_concurrency = batch_concurrency
        self.batch_delay = batch_delay
        self.prefer_api_for_recursive = prefer_api_for_recursive
        self.on_progress = on_progress

    def _classifier(self, tool: ISyncTool) -> FolderClassifier:
        return FolderClassifier(tool, self.file_extensions, self.verify_concurrency)

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    async def delete_target(self, target: DeletionTarget) -> DeletionResult:
        result = DeletionResult(path=target.path, mode=target.mode, dry_run=target.dry_run)
        label = "[DRY RUN] " if target.dry_run else ""
        logger.info(f"{label}Processing {target.path} ({target.mode.value})")

        try:
            self.safety.check_target(target)

            if target.mode == DeletionMode.RECURSIVE and self.prefer_api_for_recursive:
                await self._purge_prefix_via_api(target.base_path, target.dry_run, result)
                return result.finish()

            async with self.resolver.acquire() as handle:
                tool = self.tool_factory(handle)
                if target.mode == DeletionMode.RECURSIVE:
                    await self._delete_recursive(tool, target, result)
                elif target.mode == DeletionMode.FILES_ONLY:
                    await self._delete_files_only(tool, target, result)
                else:
                    await self._delete_folders_only(tool, target, result)
        except Exception as e:
            log_exception(logger, f"Target {target.path} failed", e)
            result.add_error(str(e))

        result.finish()
        if result.skipped:
            logger.info(f"Skipped {target.path}: {result.skip_reason}")
        else:
            verb = "Would delete" if target.dry_run else "Deleted"
            logger.info(f"{verb} {result.deleted_count} object(s) under {target.path} "
                        f"in {result.duration:.2f}s ({result.failed_count} failed)")
        return result

    async def delete_targets(self, targets: Iterable[DeletionTarget]) -> RunSummary:
        """Process targets strictly one after another; a failed target never stops the run."""
        summary = RunSummary()
        for target in targets:
            summary.add(await self.delete_target(target))
        return summary.finish()

    # ------------------------------------------------------------------
    # Mode protocols
    # ------------------------------------------------------------------

    async def _scan_files(self, tool: ISyncTool, path: str, recursive: bool) -> List[str]:
        listing = await tool.list_files(path, recursive=recursive)
        if listing.status == SyncStatus.NOT_FOUND:
            return []
        if listing.status == SyncStatus.ERROR:
            raise SyncCommandError(f"Failed to scan {path}: {listing.message}")
        return [f"{path}/{line.lstrip('/')}" for line in listing.lines]

    async def _delete_recursive(self, tool: ISyncTool, target: DeletionTarget, result: DeletionResult):
        path = target.base_path
        dry_run = target.dry_run

        files = await self._scan_files(tool, path, recursive=True)
        result.scanned.extend(files)

        purge = await tool.purge(path, dry_run=dry_run)
        if purge.status == SyncStatus.ERROR:
            result.add_error(f"Purge of {path} failed: {purge.message}")
            return
        if purge.status == SyncStatus.NOT_FOUND:
            logger.info(f"{path} already absent")
        result.add_deleted(len(files))

        if not dry_run:
            leftovers = await tool.rmdirs(path)
            if not leftovers.succeeded:
                logger.warning(f"Removing empty directories under {path} failed: {leftovers.message}")

        marker = f"{path}/"
        await self._delete_marker_via_api(marker, dry_run)
        # Some providers keep an empty-prefix ghost the API delete misses
        await tool.delete_file(marker, dry_run=dry_run)

    async def _delete_marker_via_api(self, marker: str, dry_run: bool):
        if self.store is None:
            logger.debug(f"No object API configured, skipping marker delete for {marker}")
            return
        if dry_run:
            logger.info(f"[DRY RUN] Would delete folder marker {marker}")
            return
        try:
            if not await self.store.delete_object(marker):
                logger.warning(f"Folder marker delete for {marker} returned false")
        except ObjectStoreError as e:
            logger.warning(f"Folder marker delete for {marker} failed: {e}")

    async def _delete_files_only(self, tool: ISyncTool, target: DeletionTarget, result: DeletionResult):
        base = target.base_path
        files = await self._scan_files(tool, base, recursive=False)
        result.scanned.extend(files)

        deleted = await tool.delete(base, max_depth=1, exclude="*/", dry_run=target.dry_run)
        if not deleted.succeeded:
            result.add_error(f"Deleting files in {base} failed: {deleted.message}")
            return
        result.add_deleted(len(files))

    async def _delete_folders_only(self, tool: ISyncTool, target: DeletionTarget, result: DeletionResult):
        path = target.base_path
        dry_run = target.dry_run
        classifier = self._classifier(tool)

        if classifier.is_file_like(path):
            result.skip("path has a file extension, not a folder")
            return
        if not await classifier.verify_folder(path):
            result.skip("no files found directly under folder")
            return

        files = await self._scan_files(tool, path, recursive=True)
        result.scanned.extend(files)

        deleted = await tool.delete(path, include="**", dry_run=dry_run)
        if not deleted.succeeded:
            result.add_error(f"Deleting files in {path} failed: {deleted.message}")
            return
        result.add_deleted(len(files))

        purge = await tool.purge(path, dry_run=dry_run)
        if not purge.succeeded:
            logger.warning(f"Purging folder structure of {path} failed after files were removed: {purge.message}")

        if not dry_run:
            leftovers = await tool.rmdirs(path)
            if not leftovers.succeeded:
                logger.warning(f"Removing empty directories under {path} failed: {leftovers.message}")

    # ------------------------------------------------------------------
    # Discovery and API-driven purges
    # ------------------------------------------------------------------

    async def discover(self, base: str) -> List[str]:
        """Verified folders under base, sorted."""
        async with self.resolver.acquire() as handle:
            classifier = self._classifier(self.tool_factory(handle))
            return await classifier.discover_folders(base.strip("/"))

    async def purge_prefix_via_api(self, prefix: str, dry_run: bool = False) -> DeletionResult:
        result = DeletionResult(path=prefix, mode=DeletionMode.RECURSIVE, dry_run=dry_run)
        try:
            self.safety.check_target(DeletionTarget(prefix, DeletionMode.RECURSIVE, dry_run))
            await self._purge_prefix_via_api(prefix.strip("/"), dry_run, result)
        except Exception as e:
            log_exception(logger, f"Prefix purge of {prefix} failed", e)
            result.add_error(str(e))
        return result.finish()

    async def _purge_prefix_via_api(self, path: str, dry_run: bool, result: DeletionResult):
        if self.listing is None:
            raise ObjectStoreError("Object API credentials are required for API-driven deletes")

        prefix = f"{path}/"
        listing = await self.listing.list_all(prefix)
        for failure in listing.failed_pages:
            result.add_error(f"Listing {prefix}: {failure}")
        keys = listing.keys
        result.scanned.extend(keys)
        logger.info(f"Found {len(keys)} object(s) in {prefix}")

        if not keys:
            return
        if dry_run:
            for key in keys[:10]:
                logger.info(f"[DRY RUN]   - {key}")
            if len(keys) > 10:
                logger.info(f"[DRY RUN]   ... and {len(keys) - 10} more")
            result.add_deleted(len(keys))
            return

        batch = await delete_many(self.store, keys, concurrency=self.batch_concurrency,
                                  on_progress=self.on_progress, batch_delay=self.batch_delay)
        result.add_batch(batch)

    async def cleanup_duplicates(self, base: str, dry_run: bool = False) -> RunSummary:
        """Purge every base/X/X/ prefix, one after another."""
        summary = RunSummary()
        if self.listing is None:
            result = DeletionResult(path=base, mode=DeletionMode.RECURSIVE, dry_run=dry_run)
            result.add_error("Object API credentials are required for duplicate cleanup")
            summary.add(result.finish())
            return summary.finish()

        base = base.strip("/")
        try:
            listing = await self.listing.list_all(f"{base}/")
        except ObjectStoreError as e:
            log_exception(logger, f"Scanning {base}/ for duplicates failed", e)
            result = DeletionResult(path=base, mode=DeletionMode.RECURSIVE, dry_run=dry_run)
            result.add_error(str(e))
            summary.add(result.finish())
            return summary.finish()

        duplicates = find_nested_duplicates(listing.keys, base)
        if not duplicates:
            logger.info("No duplicate folders found")
        else:
            logger.info(f"Found {len(duplicates)} duplicate folder pattern(s)")

        for prefix in duplicates:
            summary.add(await self.purge_prefix_via_api(prefix, dry_run))
        return summary.finish()
