import time
import sys

class ProgressBar:
    """Simple text-based progress indicator for CLI tools."""

    def __init__(self, desc="Deleting"):
        self.desc = desc
        self.processed = 0
        self.total = 0
        self.start_time = time.time()
        self.spinner = ['⠋', '⠙', '⠹', '⠸', '⠼', '⠴', '⠦', '⠧', '⠇', '⠏']
        self.spin_idx = 0

    def update(self, processed, total, deleted=0, failed=0):
        """Update the progress display. Matches the batch delete progress callback."""
        self.processed = processed
        self.total = total
        self.spin_idx = (self.spin_idx + 1) % len(self.spinner)

        elapsed = time.time() - self.start_time
        spinner = self.spinner[self.spin_idx]
        percent = (processed / total * 100) if total else 100.0

        progress_str = f"\r{spinner} {self.desc}: "
        progress_str += f"{processed:,}/{total:,} ({percent:.0f}%) | "
        progress_str += f"🗑️  {deleted:,} deleted | ❌ {failed:,} failed | "
        progress_str += f"⏱️  {elapsed:.1f}s"

        # Pad to clear previous line
        progress_str = progress_str.ljust(80)

        sys.stdout.write(progress_str)
        sys.stdout.flush()

    __call__ = update

    def finish(self, message="Done!"):
        """Finish the progress display."""
        elapsed = time.time() - self.start_time
        print(f"\r✅ {message} ({elapsed:.1f}s)".ljust(80))


def summarize_paths(paths, limit=20):
    """
    Split a path list for display: the first `limit` entries and the
    count of the rest.
    """
    paths = list(paths)
    return paths[:limit], max(0, len(paths) - limit)


def format_size(size_bytes):
    """Human-readable size, KB granularity for object listings."""
    kb = size_bytes / 1024
    if kb < 1024:
        return f"{kb:.2f} KB"
    return f"{kb / 1024:.2f} MB"
