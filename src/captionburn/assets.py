"""
Per-request ephemeral asset allocation and cleanup.

Every path handed out here embeds the request id and the asset kind, so two
requests sharing the same working directory can never address the same file.
``AssetManager.session`` is the only supported way to hold a handle: it runs
``release_all`` on every exit path.
"""

import contextlib
import logging
import os
import re
import shutil
import time
import uuid
from collections.abc import Iterator
from pathlib import Path

from .errors import StagingFailure
from .models import AssetKind, EphemeralAsset

logger = logging.getLogger("captionburn")

_SUFFIX_RE = re.compile(r"^\.[A-Za-z0-9]{1,8}$")

DEFAULT_SUFFIXES = {
    AssetKind.INPUT: ".mp4",
    AssetKind.SUBTITLE_FILE: ".srt",
    AssetKind.BROLL_CLIP: ".mp4",
    AssetKind.OUTPUT: ".mp4",
}


def new_request_id() -> str:
    """Unique, roughly time-ordered request id."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def safe_suffix(filename: str | None, default: str = ".mp4") -> str:
    """Extension of an uploaded filename, or ``default`` if it looks unsafe."""
    suffix = Path(filename or "").suffix.lower()
    return suffix if _SUFFIX_RE.match(suffix) else default


def ensure_dir(path: str) -> None:
    """Ensure directory exists."""
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


class AssetHandle:
    """The set of ephemeral assets owned by one request."""

    def __init__(self, request_id: str, uploads_dir: str, output_dir: str):
        self.request_id = request_id
        self._uploads_dir = uploads_dir
        self._output_dir = output_dir
        self._assets: dict[AssetKind, EphemeralAsset] = {}
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def assets(self) -> list[EphemeralAsset]:
        return list(self._assets.values())

    def path(self, kind: AssetKind) -> str:
        asset = self._assets.get(kind)
        if asset is None:
            raise KeyError(f"{kind.value} was never reserved for request {self.request_id}")
        return asset.path

    def reserve(self, kind: AssetKind, suffix: str | None = None) -> str:
        """Reserve a unique path for ``kind``. No file is created."""
        if self._released:
            raise StagingFailure(f"request {self.request_id} already released its assets")
        if kind in self._assets:
            return self._assets[kind].path
        directory = self._output_dir if kind is AssetKind.OUTPUT else self._uploads_dir
        suffix = suffix if suffix and _SUFFIX_RE.match(suffix) else DEFAULT_SUFFIXES[kind]
        path = os.path.join(directory, f"{self.request_id}-{kind.value}{suffix}")
        self._assets[kind] = EphemeralAsset(kind=kind, path=path)
        return path

    def commit(
        self, kind: AssetKind, *, data: bytes | str | None = None, source: str | None = None
    ) -> str:
        """Materialize ``kind`` from in-memory ``data`` or by copying ``source``."""
        if (data is None) == (source is None):
            raise ValueError("commit() takes exactly one of data= or source=")
        path = self.reserve(kind)
        # Mark first so a half-written file is still removed on release.
        self._assets[kind].created = True
        try:
            if source is not None:
                shutil.copyfile(source, path)
            elif isinstance(data, str):
                Path(path).write_text(data, encoding="utf-8")
            else:
                Path(path).write_bytes(data)
        except OSError as e:
            raise StagingFailure(f"could not write {kind.value} asset: {e.strerror or e}") from e
        logger.debug("[%s] committed %s -> %s", self.request_id, kind.value, path)
        return path

    def mark_created(self, kind: AssetKind) -> None:
        """Record that an external writer (downloader, encoder) produced ``kind``."""
        self.reserve(kind)
        self._assets[kind].created = True

    def release_all(self) -> list[str]:
        """Delete every reserved asset present on disk. Returns the removed paths.

        Individual delete failures are logged and skipped. Runs at most once.
        """
        if self._released:
            return []
        self._released = True
        removed = []
        for asset in self._assets.values():
            # Also check uncommitted reservations: ffmpeg may have left a partial output.
            if not os.path.exists(asset.path):
                continue
            try:
                os.remove(asset.path)
                removed.append(asset.path)
            except OSError as e:
                logger.warning("[%s] failed to remove %s: %s", self.request_id, asset.path, e)
        logger.debug("[%s] released %d assets", self.request_id, len(removed))
        return removed


class AssetManager:
    """Hands out per-request asset handles rooted at one working directory."""

    def __init__(self, work_dir: str):
        self.work_dir = os.path.abspath(work_dir)
        self.uploads_dir = os.path.join(self.work_dir, "uploads")
        self.output_dir = os.path.join(self.work_dir, "output")

    def begin(self, request_id: str) -> AssetHandle:
        try:
            ensure_dir(self.uploads_dir)
            ensure_dir(self.output_dir)
        except OSError as e:
            raise StagingFailure(f"could not prepare working directories: {e.strerror or e}") from e
        return AssetHandle(request_id, self.uploads_dir, self.output_dir)

    @contextlib.contextmanager
    def session(self, request_id: str) -> Iterator[AssetHandle]:
        """Yield a fresh handle and release it however the block exits."""
        handle = self.begin(request_id)
        try:
            yield handle
        finally:
            handle.release_all()

    def files_for(self, request_id: str) -> list[str]:
        """Paths on disk belonging to ``request_id``."""
        found = []
        for directory in (self.uploads_dir, self.output_dir):
            if os.path.isdir(directory):
                found.extend(
                    os.path.join(directory, name)
                    for name in os.listdir(directory)
                    if name.startswith(f"{request_id}-")
                )
        return sorted(found)
