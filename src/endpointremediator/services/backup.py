"""Pre-destruction backup of a source tree."""

from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from endpointremediator.constants import BACKUP_SPACE_FACTOR
from endpointremediator.errors import ActionFailed
from endpointremediator.models import BackupManifest
from endpointremediator.services.filesystem import COLLISION_SUFFIX, unique_path


class BackupCollector:
    """Copies a source tree to a timestamped destination after a free-space check.

    The source is never modified. ``backup`` returns None without copying
    anything when the destination has less than ``BACKUP_SPACE_FACTOR`` times
    the source size available.
    """

    def __init__(self, filesystem, logger, space_factor: float = BACKUP_SPACE_FACTOR):
        self.filesystem = filesystem
        self.logger = logger
        self.space_factor = space_factor

    def plan(self, source: str, dest_root: str) -> BackupManifest:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        destination = unique_path(Path(dest_root) / f"{Path(source).name}-backup-{stamp}")
        return BackupManifest(
            source_path=str(source),
            destination_path=str(destination),
            byte_size=self.filesystem.tree_size(source),
            free_space=self.filesystem.free_space(dest_root),
        )

    def has_room(self, manifest: BackupManifest) -> bool:
        return manifest.free_space >= manifest.byte_size * self.space_factor

    def backup(self, source: str, dest_root: str) -> Optional[BackupManifest]:
        if not self.filesystem.exists(source):
            raise ActionFailed(f"Backup source does not exist: {source}", code="backup_failed")

        manifest = self.plan(source, dest_root)
        if not self.has_room(manifest):
            self.logger.error(
                f"Insufficient space for backup: {manifest.byte_size} bytes needed "
                f"(x{self.space_factor}), {manifest.free_space} bytes free at {dest_root}"
            )
            return None

        self.logger.info(f"Backing up {manifest.byte_size} bytes from {source} to {manifest.destination_path}")
        self.filesystem.copy(source, manifest.destination_path, collision=COLLISION_SUFFIX)
        return manifest

    def collect(self, sources: Iterable[str], dest_root: str) -> Optional[BackupManifest]:
        """Copies individual files into one flat destination folder; same-named files get a numeric suffix."""
        files = [str(source) for source in sources]
        total = sum(self.filesystem.tree_size(path) for path in files)
        free = self.filesystem.free_space(dest_root)
        manifest = BackupManifest(
            source_path=", ".join(files),
            destination_path=str(dest_root),
            byte_size=total,
            free_space=free,
        )
        if not self.has_room(manifest):
            self.logger.error(f"Insufficient space to collect {len(files)} file(s) into {dest_root}")
            return None

        written: List[str] = []
        for path in files:
            report = self.filesystem.copy(path, str(Path(dest_root) / Path(path).name), collision=COLLISION_SUFFIX)
            written.extend(report.written)
        self.logger.info(f"Collected {len(written)} file(s) into {dest_root}")
        return manifest
