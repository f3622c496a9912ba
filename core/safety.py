import logging
from typing import List, Optional

from .types import DeletionMode, DeletionTarget

logger = logging.getLogger("safety_monitor")


class SafetyMonitor:
    def __init__(self, protected_prefixes: Optional[List[str]] = None):
        self.protected_prefixes = [p.strip("/") for p in (protected_prefixes or []) if p.strip("/")]

    def is_protected(self, path: str) -> bool:
        clean = path.strip("/")
        for prefix in self.protected_prefixes:
            if clean == prefix or clean.startswith(prefix + "/") or prefix.startswith(clean + "/"):
                return True
        return False

    def check_target(self, target: DeletionTarget) -> bool:
        """
        Validate a deletion target before any scanning happens.
        Returns True if safe, raises SafetyException if unsafe.
        """
        base = target.base_path
        if not base:
            # Empty base means the bucket root
            msg = f"Refusing to delete at bucket root ({target.mode.value}: {target.path!r})"
            logger.critical(msg)
            raise SafetyException(msg)

        if self.is_protected(base):
            msg = f"Target {base!r} is inside or contains a protected prefix"
            logger.critical(msg)
            raise SafetyException(msg)

        if target.mode != DeletionMode.FILES_ONLY and "*" in base:
            raise SafetyException(f"Wildcards are only allowed as a trailing files-only marker: {target.path!r}")

        return True


class SafetyException(Exception):
    pass
