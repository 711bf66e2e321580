"""Installer payload download with progress reporting and checksum validation."""

import hashlib
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from endpointremediator.errors import ActionFailed


def is_url(location: str) -> bool:
    return urlparse(location).scheme.lower() in {"http", "https"}


class DownloadService:
    """Fetches remote installers into a local staging directory."""

    def __init__(self, logger, console, requests_module, timeout: float = 60.0):
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout

    def download_file(self, url: str, dest_path: str, expected_sha256: Optional[str] = None):
        if urlparse(url).scheme.lower() != "https":
            raise ActionFailed(f"Refusing to download over insecure HTTP: {url}", code="download_failed")

        self.logger.info("Downloading %s to %s", url, dest_path)
        hasher = hashlib.sha256() if expected_sha256 else None

        try:
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                    transient=True,
                ) as progress:
                    task = progress.add_task("[cyan]Downloading installer...", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            if hasher:
                                hasher.update(chunk)
                            progress.update(task, advance=len(chunk))
        except self.requests.RequestException as exc:
            raise ActionFailed(f"Download failed for {url}: {exc}", code="download_failed") from exc

        if hasher:
            downloaded_sha = hasher.hexdigest()
            if downloaded_sha != expected_sha256.lower():
                try:
                    os.remove(dest_path)
                except OSError:
                    pass
                raise ActionFailed(
                    f"Checksum mismatch for {url}. Expected {expected_sha256}, but got {downloaded_sha}.",
                    code="download_failed",
                )

    def fetch(self, location: str, staging_dir: str, expected_sha256: Optional[str] = None) -> str:
        """Returns a local path for ``location``, downloading it first when it is a URL."""
        if not is_url(location):
            return location

        url_path = urlparse(location).path
        filename = os.path.basename(url_path) or "installer.exe"
        target_path = str(Path(staging_dir) / filename)
        self.download_file(location, target_path, expected_sha256=expected_sha256)
        return target_path
