"""Download working directory.

Fetched artifacts and thumbnails live here only for the duration of a flow.
A process that dies mid-flow leaves files behind; ``initialize`` removes them.
"""

import os
import uuid
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class CleanupResult:
    """Result of a cleanup operation."""

    files_deleted: int
    bytes_reclaimed: int


class WorkspaceError(Exception):
    """Exception raised when the working directory is unusable."""

    pass


class Workspace:
    """Manages the scratch directory used by fetches.

    Args:
        work_dir: Directory for temporary artifacts.
    """

    def __init__(self, work_dir: str) -> None:
        self.root = Path(work_dir)

    def initialize(self, clean_leftovers: bool = True) -> CleanupResult:
        """Create the directory, verify it is writable and clear leftovers.

        Raises:
            WorkspaceError: If the directory cannot be created or written.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)

            test_file = self.root / f".write_test_{os.getpid()}_{uuid.uuid4().hex}"
            try:
                test_file.touch()
                test_file.unlink(missing_ok=True)
            except PermissionError as e:
                raise WorkspaceError(f"Working directory is not writable: {self.root}") from e
        except OSError as e:
            raise WorkspaceError(f"Failed to initialize working directory: {e}") from e

        result = self.cleanup_leftovers() if clean_leftovers else CleanupResult(0, 0)
        logger.info(
            "workspace_initialized",
            work_dir=str(self.root),
            leftovers_deleted=result.files_deleted,
        )
        return result

    def cleanup_leftovers(self) -> CleanupResult:
        """Delete every regular file in the directory.

        Only call this when no flow is running.
        """
        files_deleted = 0
        bytes_reclaimed = 0

        try:
            for filepath in self.root.iterdir():
                if filepath.is_dir() or filepath.name.startswith("."):
                    continue
                try:
                    size = filepath.stat().st_size
                    filepath.unlink()
                except OSError as e:
                    logger.warning("leftover_delete_failed", filepath=str(filepath), error=str(e))
                    continue
                files_deleted += 1
                bytes_reclaimed += size
        except OSError as e:
            logger.error("workspace_access_failed", error=str(e))

        if files_deleted:
            logger.info(
                "leftovers_cleaned",
                files_deleted=files_deleted,
                bytes_reclaimed_mb=round(bytes_reclaimed / (1024 * 1024), 2),
            )
        return CleanupResult(files_deleted=files_deleted, bytes_reclaimed=bytes_reclaimed)

    def artifact_base(self, resource_id: str, rendition: str) -> Path:
        """Path prefix for a new artifact; the fetcher appends the extension.

        A random suffix keeps concurrent fetches of the same resource apart.
        """
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in resource_id)
        return self.root / f"{safe_id}_{rendition}_{uuid.uuid4().hex[:8]}"

    def thumbnail_path(self, artifact: Path) -> Path:
        return artifact.with_name(f"{artifact.stem}_thumb.jpg")

    def purge(self, base: Path) -> int:
        """Delete every file derived from an artifact base path.

        Covers the final artifact, partial downloads and the thumbnail. Errors
        are logged, not raised.

        Returns:
            Number of files deleted.
        """
        deleted = 0
        for path in base.parent.glob(f"{base.name}*"):
            if not path.is_file():
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("artifact_delete_failed", filepath=str(path), error=str(e))
                continue
            deleted += 1
            logger.debug("artifact_deleted", filepath=str(path))
        return deleted
