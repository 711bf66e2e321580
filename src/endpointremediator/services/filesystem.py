"""Filesystem helpers for EndpointRemediator."""

import logging
import os
import shutil
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from endpointremediator.errors import ActionFailed

COLLISION_SUFFIX = "suffix"
COLLISION_NEWER = "newer"
COLLISION_POLICIES = (COLLISION_SUFFIX, COLLISION_NEWER)


@dataclass
class TransferReport:
    written: List[str] = field(default_factory=list)
    kept_existing: List[str] = field(default_factory=list)

    def describe(self) -> str:
        text = f"{len(self.written)} file(s) written"
        if self.kept_existing:
            text += f", {len(self.kept_existing)} newer file(s) kept at destination"
        return text


def _handle_readonly(function, path, exc_info):
    exc = exc_info[1] if isinstance(exc_info, tuple) else exc_info
    if isinstance(exc, PermissionError):
        os.chmod(path, stat.S_IWRITE)
        function(path)
    else:
        raise exc


def unique_path(path: Path) -> Path:
    """Returns ``path`` or the first free ``name (n).ext`` sibling."""
    if not path.exists():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Optional[Console] = None):
        self.logger = logger
        self.console = console

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def glob(self, directory: str, pattern: str) -> List[Path]:
        root = Path(directory)
        if not root.is_dir():
            return []
        return sorted(root.glob(pattern))

    def tree_size(self, path: str) -> int:
        root = Path(path)
        if root.is_file():
            return root.stat().st_size
        total = 0
        for current_root, _dirs, files in os.walk(root):
            for file_name in files:
                file_path = os.path.join(current_root, file_name)
                try:
                    total += os.lstat(file_path).st_size
                except OSError as exc:
                    self.logger.warning("Could not stat %s: %s", file_path, exc)
        return total

    def free_space(self, path: str) -> int:
        candidate = Path(path).absolute()
        while not candidate.exists() and candidate != candidate.parent:
            candidate = candidate.parent
        return shutil.disk_usage(str(candidate)).free

    def _keeps_existing(self, source: Path, destination: Path, collision: str) -> bool:
        return (
            collision == COLLISION_NEWER
            and destination.exists()
            and destination.stat().st_mtime >= source.stat().st_mtime
        )

    def _place_file(self, source: Path, destination: Path, collision: str, move: bool, report: TransferReport):
        destination.parent.mkdir(parents=True, exist_ok=True)
        if self._keeps_existing(source, destination, collision):
            report.kept_existing.append(str(destination))
            return
        if destination.exists():
            destination = unique_path(destination)

        if move:
            shutil.move(str(source), str(destination))
        else:
            shutil.copy2(str(source), str(destination))
        report.written.append(str(destination))

    @staticmethod
    def _file_pairs(src: Path, dst: Path):
        for current_root, _dirs, files in os.walk(src):
            relative = Path(current_root).relative_to(src)
            for file_name in files:
                yield Path(current_root) / file_name, dst / relative / file_name

    def pending_transfers(self, source: str, destination: str, collision: str = COLLISION_NEWER) -> List[str]:
        """Source files a copy or move with ``collision`` would still write."""
        src = Path(source)
        if not src.exists():
            return []
        if src.is_file():
            pairs = [(src, Path(destination))]
        else:
            pairs = self._file_pairs(src, Path(destination))
        return [str(item) for item, target in pairs if not self._keeps_existing(item, target, collision)]

    def _prune_empty_dirs(self, root: Path):
        for current_root, _dirs, _files in os.walk(root, topdown=False):
            current = Path(current_root)
            if any(current.iterdir()):
                continue
            try:
                current.rmdir()
                self.logger.debug("Removed empty directory: %s", current)
            except OSError as exc:
                self.logger.warning("Could not remove emptied directory %s: %s", current, exc)

    def _transfer(self, source: str, destination: str, collision: str, move: bool) -> TransferReport:
        if collision not in COLLISION_POLICIES:
            raise ActionFailed(f"Unknown collision policy: {collision}")

        src = Path(source)
        dst = Path(destination)
        report = TransferReport()
        if not src.exists():
            raise ActionFailed(f"Source does not exist: {source}")

        if src.is_file():
            self._place_file(src, dst, collision, move, report)
            return report

        for current_root, _dirs, files in os.walk(src):
            relative = Path(current_root).relative_to(src)
            (dst / relative).mkdir(parents=True, exist_ok=True)
            for file_name in files:
                self._place_file(
                    Path(current_root) / file_name,
                    dst / relative / file_name,
                    collision,
                    move,
                    report,
                )
        if move:
            self._prune_empty_dirs(src)
        return report

    def copy(self, source: str, destination: str, collision: str = COLLISION_SUFFIX) -> TransferReport:
        return self._transfer(source, destination, collision, move=False)

    def move(self, source: str, destination: str, collision: str = COLLISION_NEWER) -> TransferReport:
        return self._transfer(source, destination, collision, move=True)

    def delete(self, path: str):
        target = Path(path)
        if target.is_dir() and not target.is_symlink():
            if sys.version_info >= (3, 12):
                shutil.rmtree(target, onexc=_handle_readonly)
            else:
                shutil.rmtree(target, onerror=_handle_readonly)
            self.logger.debug("Removed directory: %s", path)
            return
        try:
            target.unlink()
        except PermissionError:
            os.chmod(target, stat.S_IWRITE)
            target.unlink()
        self.logger.debug("Removed file: %s", path)

    def rename_aside(self, path: str, stamp: str) -> str:
        target = Path(path)
        renamed = unique_path(target.with_name(f"{target.name}.old-{stamp}"))
        target.rename(renamed)
        return str(renamed)

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except Exception as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                if self.console is not None:
                    self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
