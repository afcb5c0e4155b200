"""
Track queue for the room radio.

A rotating playlist: every reference handed out by get_next() stays in the
queue and comes around again on the next pass.  Sequential mode plays the
tracks in list order; shuffle mode draws a fresh random order for each pass
and avoids repeating the previous track across a pass boundary.

The queue state (tracks + what is left of the current pass) is stored as
JSON.  Writes are atomic (temp file + rename) so a crash mid-write never
corrupts the file.
"""

import json
import logging
import os
import random
import tempfile
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

PLAYLIST_COMMENT = "#"


class TrackQueue:
    """Ordered supply of track references."""

    def __init__(self, state_path: str | None = None, shuffle: bool = False,
                 rng: random.Random | None = None):
        self.state_path = state_path
        self.shuffle = shuffle
        self._rng = rng or random.Random()
        self._tracks: list[str] = []
        self._pending: list[str] = []  # rest of the current pass
        self._last: str | None = None
        self._listeners: list = []

    # ── Read access ──

    @property
    def tracks(self) -> list[str]:
        return list(self._tracks)

    @property
    def upcoming(self) -> list[str]:
        return list(self._pending)

    def __len__(self):
        return len(self._tracks)

    def __contains__(self, ref: str):
        return ref in self._tracks

    # ── Change notification ──

    def on_change(self, callback):
        """Call *callback()* whenever tracks are added or removed.  Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _changed(self):
        self.save()
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                log.exception("Queue change listener failed")

    # ── Queue policy ──

    def _new_pass(self):
        order = list(self._tracks)
        if self.shuffle:
            self._rng.shuffle(order)
            if len(order) > 1 and order[0] == self._last:
                order[0], order[-1] = order[-1], order[0]
        self._pending = order
        log.debug("New queue pass (%d tracks, shuffle=%s)", len(order), self.shuffle)

    def get_next(self) -> str | None:
        """Next reference to play, or None when the queue is empty."""
        if not self._tracks:
            return None
        if not self._pending:
            self._new_pass()
        ref = self._pending.pop(0)
        self._last = ref
        self.save()
        return ref

    def set_shuffle(self, shuffle: bool):
        if shuffle == self.shuffle:
            return
        self.shuffle = shuffle
        self._new_pass()
        log.info("Shuffle: %s", "on" if shuffle else "off")
        self.save()

    # ── Editing ──

    def _insert(self, ref: str) -> bool:
        ref = ref.strip()
        if not ref or ref in self._tracks:
            return False
        self._tracks.append(ref)
        # Mid-pass additions still play this pass; otherwise the next pass picks them up
        if self._pending:
            if self.shuffle:
                self._pending.insert(self._rng.randint(0, len(self._pending)), ref)
            else:
                self._pending.append(ref)
        return True

    def add(self, ref: str) -> bool:
        """Append *ref*.  Returns False if it is already queued."""
        if not self._insert(ref):
            return False
        self._changed()
        return True

    def extend(self, refs) -> int:
        added = sum(1 for ref in refs if self._insert(ref))
        if added:
            self._changed()
        return added

    def remove(self, ref: str) -> bool:
        if ref not in self._tracks:
            return False
        self._tracks.remove(ref)
        self._pending = [r for r in self._pending if r != ref]
        self._changed()
        return True

    def clear(self):
        self._tracks = []
        self._pending = []
        self._changed()

    def load_playlist(self, path: str) -> int:
        """Queue every reference listed in a text/.m3u playlist.

        One reference per line; blank lines and #-comments are skipped and
        relative paths are resolved against the playlist's folder.
        """
        playlist = Path(path)
        try:
            lines = playlist.read_text().splitlines()
        except OSError as e:
            log.error("Cannot read playlist %s: %s", path, e)
            return 0
        refs = []
        for line in lines:
            line = line.strip()
            if not line or line.startswith(PLAYLIST_COMMENT):
                continue
            if "://" not in line and not os.path.isabs(line):
                line = str(playlist.parent / line)
            refs.append(line)
        added = self.extend(refs)
        log.info("Playlist %s: %d new tracks (%d total)", path, added, len(self._tracks))
        return added

    # ── Persistence ──

    def to_dict(self) -> dict:
        return {
            "tracks": list(self._tracks),
            "pending": list(self._pending),
            "shuffle": self.shuffle,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    def save(self) -> bool:
        """Atomically write the queue state to disk (no-op without a state path).

        A failed write is logged and the in-memory queue keeps working.
        """
        if not self.state_path:
            return False
        try:
            self._write_state()
        except OSError as e:
            log.warning("Cannot save queue state to %s: %s", self.state_path, e)
            return False
        return True

    def _write_state(self):
        d = os.path.dirname(os.path.abspath(self.state_path))
        os.makedirs(d, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp, self.state_path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def restore(self) -> bool:
        """Load the queue state from disk.  Returns True if state was found."""
        if not self.state_path:
            return False
        try:
            with open(self.state_path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as e:
            log.warning("Queue state %s is corrupt (%s) — starting empty", self.state_path, e)
            return False

        tracks = [t for t in data.get("tracks", []) if isinstance(t, str)]
        self._tracks = list(dict.fromkeys(tracks))
        self._pending = [t for t in data.get("pending", []) if t in self._tracks]
        self.shuffle = bool(data.get("shuffle", self.shuffle))
        log.info("Queue restored: %d tracks, %d left in this pass",
                 len(self._tracks), len(self._pending))
        return True
