"""Shared media storage that finished exports are published into."""

import os
import re
import shutil
from pathlib import Path
from uuid import uuid4

from storyreel.domain.enums import ExportDestination
from storyreel.domain.models import ExportedMedia
from storyreel.logging import get_logger

logger = get_logger(__name__)

VIDEO_MIME_TYPE = "video/mp4"
APP_FOLDER = "storyreel"
DEFAULT_DISPLAY_NAME = "storyreel"

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize_name(title: str) -> str:
    """Make a title safe to use as a file name."""
    cleaned = _UNSAFE_CHARS.sub("_", title).strip().strip(".")
    return cleaned or DEFAULT_DISPLAY_NAME


class MediaLibrary:
    """Local stand-in for the platform's shared movie and download collections.

    Layout under ``root``::

        Movies/storyreel/    <- ExportDestination.LIBRARY
        Download/storyreel/  <- ExportDestination.DOWNLOADS
    """

    _FOLDERS = {
        ExportDestination.LIBRARY: Path("Movies") / APP_FOLDER,
        ExportDestination.DOWNLOADS: Path("Download") / APP_FOLDER,
    }

    def __init__(self, root: Path) -> None:
        self.root = root

    def relative_folder(self, destination: ExportDestination) -> Path:
        return self._FOLDERS[destination]

    def _claim_name(self, folder: Path, base_name: str) -> Path:
        """Create an empty file under the first free name and return its path.

        Exclusive creation makes the claim atomic, so concurrent exports with
        the same title never pick the same file.
        """
        counter = 0
        while True:
            suffix = f" ({counter})" if counter else ""
            candidate = folder / f"{base_name}{suffix}.mp4"
            try:
                with candidate.open("xb"):
                    return candidate
            except FileExistsError:
                counter += 1

    def publish(self, source: Path, title: str, destination: ExportDestination) -> ExportedMedia:
        """Copy a finished file into the destination collection.

        The display name is derived from ``title``; a numeric suffix is added
        when a file with that name already exists. The copy goes to a hidden
        staging file first, so a failed copy never leaves a truncated export.

        Raises:
            OSError: If the destination cannot be written. Nothing is left behind.
        """
        relative = self.relative_folder(destination)
        folder = self.root / relative
        folder.mkdir(parents=True, exist_ok=True)

        base_name = sanitize_name(title)
        staging = folder / f".{base_name}.{uuid4().hex[:8]}.partial"
        try:
            shutil.copyfile(source, staging)
            target = self._claim_name(folder, base_name)
            try:
                os.replace(staging, target)
            except OSError:
                target.unlink(missing_ok=True)
                raise
        finally:
            staging.unlink(missing_ok=True)

        logger.info(
            "media_published",
            path=str(target),
            destination=destination.value,
            size=target.stat().st_size,
        )
        return ExportedMedia(
            path=str(target),
            display_name=target.name,
            relative_folder=relative.as_posix(),
            destination=destination.value,
            mime_type=VIDEO_MIME_TYPE,
        )
