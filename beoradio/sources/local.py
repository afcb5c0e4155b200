"""
Local file provider.

Plays audio files from local storage (USB drive, NAS mount, ...).  Accepts
plain paths and file:// URLs.  The title is the file name without its
extension.
"""

import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

from .base import FileStream, ResolvedTrack, TrackInfo, TrackProvider

log = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {'.flac', '.mp3', '.wma', '.aac', '.wav', '.m4a', '.ogg', '.opus'}


def ref_to_path(ref: str) -> Path:
    if ref.startswith("file://"):
        return Path(unquote(urlparse(ref).path))
    return Path(ref).expanduser()


class LocalFileProvider(TrackProvider):
    id = "local"

    def __init__(self, root: str | None = None):
        # Relative references are resolved against root (the data folder)
        self.root = Path(root).resolve() if root else None

    def handles(self, ref: str) -> bool:
        if ref.startswith("file://"):
            return True
        return "://" not in ref

    def _path(self, ref: str) -> Path:
        path = ref_to_path(ref)
        if not path.is_absolute() and self.root is not None:
            path = self.root / path
        return path

    async def resolve(self, ref: str) -> ResolvedTrack | None:
        path = self._path(ref)
        if path.suffix.lower() not in AUDIO_EXTENSIONS:
            log.warning("Not an audio file: %s", path)
            return None
        if not path.is_file():
            log.warning("File not found: %s", path)
            return None
        try:
            stream = FileStream(path)
        except OSError as e:
            log.error("Cannot open %s: %s", path, e)
            return None
        return ResolvedTrack(stream, TrackInfo(title=path.stem, source=self.id, ref=ref))
