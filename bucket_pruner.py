#!/usr/bin/env python3
"""
Bucket Pruner
=============
Bulk-deletes folders and files from an R2 / S3-compatible bucket.

Usage:
    python bucket_pruner.py presets/abc --dry-run        # Preview a recursive delete
    python bucket_pruner.py "uploads/tmp/*"               # Delete files directly in uploads/tmp
    python bucket_pruner.py --discover presets --folders-only
"""

import sys
import json
import asyncio
import argparse
from functools import partial

from logger_setup import setup_logger, format_api_error, log_exception
from pruner_config import load_config, load_credentials, MissingCredentialsError
from core.listing import ListingEngine
from core.orchestrator import DeletionOrchestrator
from core.safety import SafetyMonitor
from core.types import DeletionTarget, RunSummary
from providers.interface import ObjectStoreError, SyncToolUnavailable
from providers.r2_api_provider import R2ApiProvider
from providers.rclone_provider import RcloneSyncTool
from providers.rclone_remote import RemoteResolver
from utils import ProgressBar, summarize_paths, format_size

logger = None


def print_header():
    """Print application header."""
    print()
    print("╔══════════════════════════════════════════════════════════════╗")
    print("║        🪣  BUCKET PRUNER                                      ║")
    print("╚══════════════════════════════════════════════════════════════╝")
    print()


def print_section(title):
    """Print a section header."""
    print(f"\n{'─' * 60}")
    print(f"  {title}")
    print(f"{'─' * 60}")


def display_paths(paths, title):
    shown, remaining = summarize_paths(paths)
    print(f"\n📋 {title} ({len(paths)}):\n")
    for i, path in enumerate(shown, 1):
        print(f"  {i:4}. {path}")
    if remaining:
        print(f"        ... and {remaining} more")


def confirm_deletion(description):
    """
    Show confirmation prompt before deletion.
    Returns True if user confirms, False otherwise.
    """
    print("\n" + "=" * 70)
    print("⚠️  WARNING: DELETION CANNOT BE UNDONE!")
    print("=" * 70)
    print(f"\nYou are about to permanently delete {description}.\n")
    print("Objects removed from the bucket cannot be recovered by this tool.")
    print("=" * 70)

    response = input("\nType 'DELETE' (all caps) to confirm deletion, or anything else to cancel: ")
    return response == "DELETE"


def print_summary(summary: RunSummary):
    print_section("📊 DELETION SUMMARY")
    for result in summary.results:
        prefix = "[DRY RUN] " if result.dry_run else ""
        if result.skipped:
            print(f"  ⏭️  {prefix}{result.path}: skipped ({result.skip_reason})")
        elif result.ok:
            print(f"  ✓ {prefix}{result.path}: {result.deleted_count} object(s) ({result.duration:.1f}s)")
        else:
            print(f"  ✗ {prefix}{result.path}: {result.deleted_count} deleted, {result.failed_count} failed")
            for error in result.errors[:5]:
                print(f"      Error: {error}")
            if len(result.errors) > 5:
                print(f"      ... and {len(result.errors) - 5} more error(s)")

    print(f"\n  Targets:  {len(summary.results)} ({summary.skipped} skipped, {len(summary.failed_targets)} failed)")
    print(f"  Deleted:  {summary.deleted}")
    print(f"  Failed:   {summary.failed}")
    print(f"  Duration: {summary.duration:.1f}s")


def build_targets(args):
    return [
        DeletionTarget.from_arg(raw, files_only=args.files_only,
                                folders_only=args.folders_only, dry_run=args.dry_run)
        for raw in args.targets
    ]


def build_orchestrator(config, creds, prefer_api=False, on_progress=None):
    store = None
    listing = None
    if creds.has_api_token:
        store = R2ApiProvider(creds.account_id, creds.bucket, creds.api_token)
        listing = ListingEngine(
            store,
            window=config["page_window"],
            max_attempts=config["max_page_attempts"],
            retry_base_delay=config["retry_base_delay"],
            max_pages=config["max_pages"],
            cursor_delay=config["cursor_delay"],
            coalesce_cursor_probe=config["coalesce_cursor_probe"],
        )

    resolver = RemoteResolver(
        endpoint=creds.resolved_endpoint,
        access_key_id=creds.access_key_id,
        secret_access_key=creds.secret_access_key,
        preferred_remote=creds.remote_name,
        binary=config["rclone_binary"],
    )
    tool_factory = partial(_make_sync_tool, bucket=creds.bucket,
                           binary=config["rclone_binary"], timeout=config["rclone_timeout"])

    return DeletionOrchestrator(
        resolver, creds.bucket,
        store=store,
        tool_factory=tool_factory,
        safety=SafetyMonitor(config["protected_prefixes"]),
        listing=listing,
        file_extensions=config["file_extensions"],
        verify_concurrency=config["verify_concurrency"],
        batch_concurrency=config["batch_concurrency"],
        batch_delay=config["batch_delay"],
        prefer_api_for_recursive=prefer_api,
        on_progress=on_progress,
    )


def _make_sync_tool(handle, bucket, binary, timeout):
    return RcloneSyncTool(handle, bucket, binary=binary, timeout=timeout)


async def list_objects(orchestrator, prefix):
    """Print every object under prefix, then a JSON dump."""
    if orchestrator.listing is None:
        print("❌ CLOUDFLARE_API_TOKEN is required to list objects.")
        return 1

    prefix = prefix.lstrip("/")
    print_section(f"📄 Objects under '{prefix}'")
    listing = await orchestrator.listing.list_all(prefix)

    print(f"\nFound {len(listing)} object(s) in {listing.pages} page(s):\n")
    for entry in listing:
        print(f"  - {entry.key} ({format_size(entry.size)})")

    dump = {"objects": [{"key": e.key, "size": e.size, "etag": e.etag} for e in listing]}
    print("\nFull JSON:")
    print(json.dumps(dump, indent=2))

    for failure in listing.failed_pages:
        print(f"  ⚠️  {failure}")
    if listing.hit_page_limit:
        print("  ⚠️  Page limit reached, listing is partial")
    return 0 if listing.complete else 1


async def run(args, orchestrator, progress):
    if args.list:
        return await list_objects(orchestrator, args.list)

    mode_label = "DRY RUN (no deletions)" if args.dry_run else "DELETE MODE"

    if args.duplicates:
        print_section(f"🔁 Duplicate folders under '{args.duplicates}'")
        print(f"  Mode: {mode_label}")
        if not args.dry_run and not args.yes:
            if not confirm_deletion(f"every '{args.duplicates}/X/X/' duplicate folder"):
                print("\n❌ Deletion cancelled.")
                return 0
        summary = await orchestrator.cleanup_duplicates(args.duplicates, dry_run=args.dry_run)
        if progress.processed:
            progress.finish("Batch deletes complete")
        print_summary(summary)
        return summary.exit_code

    targets = build_targets(args)

    if args.discover:
        print_section(f"🔍 Discovering folders under '{args.discover}'")
        folders = await orchestrator.discover(args.discover)
        if not folders:
            print("\n✅ No folders with files found.")
        else:
            display_paths(folders, "Verified folders")
        targets.extend(
            DeletionTarget.from_arg(path, files_only=args.files_only,
                                    folders_only=args.folders_only, dry_run=args.dry_run)
            for path in folders
        )

    if not targets:
        print("\nNothing to delete.")
        return 0

    print_section("🎯 Targets")
    print(f"  Mode: {mode_label}")
    for target in targets[:20]:
        print(f"  - {target.path} ({target.mode.value})")
    if len(targets) > 20:
        print(f"  ... and {len(targets) - 20} more")

    if not args.dry_run and not args.yes:
        if not confirm_deletion(f"{len(targets)} target(s)"):
            print("\n❌ Deletion cancelled.")
            return 0

    summary = await orchestrator.delete_targets(targets)
    if progress.processed:
        progress.finish("Batch deletes complete")
    print_summary(summary)
    return summary.exit_code


def main(argv=None):
    global logger

    parser = argparse.ArgumentParser(
        description="Bulk-delete folders and files from an R2 / S3-compatible bucket.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python bucket_pruner.py presets/abc --dry-run            # Preview recursive delete
  python bucket_pruner.py presets/abc presets/def --yes    # Delete two prefixes, no prompt
  python bucket_pruner.py "uploads/tmp/*"                   # Files directly in uploads/tmp only
  python bucket_pruner.py presets/abc --folders-only       # Folder contents, if it holds files
  python bucket_pruner.py --discover presets --dry-run     # Delete every folder with files
  python bucket_pruner.py presets/abc --via-api            # Delete through the object API
  python bucket_pruner.py --list presets/abc               # List objects with sizes
  python bucket_pruner.py --duplicates presets --dry-run   # Find presets/X/X/ folders
        """
    )

    parser.add_argument("targets", nargs="*", metavar="TARGET",
                        help="Bucket-relative path; a trailing '*' means files-only")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--files-only", action="store_true",
                      help="Delete only files directly in each target, keep subfolders")
    mode.add_argument("--folders-only", action="store_true",
                      help="Delete a folder's contents only when it directly holds files")

    parser.add_argument("--dry-run", action="store_true",
                        help="Scan and report without deleting anything (safe mode)")
    parser.add_argument("--discover", metavar="BASE",
                        help="Find every folder under BASE that directly holds files and delete it")
    parser.add_argument("--via-api", action="store_true",
                        help="Delete recursive targets through the object API instead of rclone")
    parser.add_argument("--list", metavar="PREFIX",
                        help="List objects under PREFIX and exit")
    parser.add_argument("--duplicates", metavar="BASE",
                        help="Delete folders nested inside a same-named folder under BASE")
    parser.add_argument("--env", help="Credentials environment from the config file")
    parser.add_argument("--config", help="Path to a config file (default: pruner_config.json)")
    parser.add_argument("--yes", "-y", action="store_true",
                        help="Skip the DELETE confirmation prompt")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show debug output, including every rclone command")

    args = parser.parse_args(argv)

    if not (args.targets or args.discover or args.list or args.duplicates):
        parser.error("give at least one TARGET, or --discover, --list or --duplicates")

    logger, log_file = setup_logger(None, 'bucket_pruner', verbose=args.verbose)

    print_header()

    try:
        config = load_config(args.config)
        creds = load_credentials(args.env, config)
    except MissingCredentialsError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    print(f"  Bucket: {creds.bucket}")
    print(f"  Log:    {log_file}")

    progress = ProgressBar("Deleting objects")
    orchestrator = build_orchestrator(config, creds, prefer_api=args.via_api, on_progress=progress)

    try:
        return asyncio.run(run(args, orchestrator, progress))
    except KeyboardInterrupt:
        print("\n\n❌ Interrupted.")
        return 1
    except SyncToolUnavailable as e:
        print(f"❌ {e}")
        return 1
    except ObjectStoreError as e:
        logger.error(format_api_error(e))
        return 1
    except Exception as e:
        log_exception(logger, "Unexpected error", e)
        return 1
    finally:
        orchestrator.resolver.release()
        if orchestrator.store is not None:
            orchestrator.store.close()


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
