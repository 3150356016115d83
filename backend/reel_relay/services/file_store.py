"""
Transient file store for per-session working files.

Every stage writes to its own file named after the session id and stage
tag, so a failed stage can always fall back to the previous file.
Sessions never share files, so no locking is needed.
"""

import logging
import time
from pathlib import Path

logger = logging.getLogger(__name__)

# Prefixes of files that may outlive a crashed session
ORPHAN_PREFIXES = ("instagram_upload_", "trimmed_ai_")


class TransientFileStore:
    """
    Names and deletes session-scoped files in one working directory.

    Example:
        store = TransientFileStore(Path("videos"))
        source = store.path_for(session_id, "source")
        ...
        store.purge_session(session_id)
        store.purge_orphans(600)
    """

    def __init__(self, root: Path, orphan_prefixes: tuple[str, ...] = ORPHAN_PREFIXES):
        self.root = Path(root)
        self.orphan_prefixes = orphan_prefixes
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str, stage_tag: str, suffix: str = ".mp4") -> Path:
        """
        Unique path for one stage's output.

        Args:
            session_id: Owning session
            stage_tag: Stage name, optionally with a discriminator
                (e.g. "instagram_upload_alice_2")
            suffix: File extension

        Returns:
            Path inside the store root; the file is not created
        """
        if not session_id or not stage_tag:
            raise ValueError("session_id and stage_tag are required")
        return self.root / f"{stage_tag}_{session_id}{suffix}"

    def purge_session(self, session_id: str) -> int:
        """
        Delete every file whose name contains the session id.

        Files that vanish concurrently count as deleted.

        Returns:
            Number of files removed
        """
        if not session_id or not self.root.exists():
            return 0

        removed = 0
        for path in self.root.iterdir():
            if session_id not in path.name or not path.is_file():
                continue
            if self._unlink(path):
                removed += 1

        if removed:
            logger.info(f"Cleaned up {removed} file(s) for session {session_id}")
        return removed

    def purge_orphans(self, older_than_seconds: float) -> int:
        """
        Delete stray transient files left behind by crashed sessions.

        Args:
            older_than_seconds: Minimum age (by modification time)

        Returns:
            Number of files removed
        """
        if not self.root.exists():
            return 0

        cutoff = time.time() - older_than_seconds
        removed = 0
        for path in self.root.iterdir():
            if not path.name.startswith(self.orphan_prefixes):
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if self._unlink(path):
                removed += 1
                logger.info(f"Cleaned up orphaned file: {path.name}")

        return removed

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.warning(f"Could not delete {path.name}: {e}")
            return False
