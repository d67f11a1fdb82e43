"""Target Store: the published scrape-target file.

Single writer (the reconciler), any number of independent readers (the
metrics collector polls the file on its own schedule). Every publish is an
atomic replace: write a temp file in the destination directory, fsync, then
``os.replace`` it over the published path. Readers therefore always see
either the previous complete file or the new complete file.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import structlog

from fleetwatch.models.targets import TargetDescriptor

_log = structlog.get_logger(component="discovery.store")

# The collector usually runs under its own user.
_FILE_MODE = 0o644


class TargetPublishError(Exception):
    """The target file could not be replaced; the previous file is intact."""


def serialize_targets(targets: list[TargetDescriptor]) -> str:
    """Render a target set in file_sd JSON. An empty set renders as ``[]``."""
    return json.dumps([t.to_dict() for t in targets], indent=2) + "\n"


def parse_targets(text: str) -> list[TargetDescriptor]:
    """Parse file_sd JSON back into TargetDescriptors.

    Raises:
        ValueError: the document is not a list of target objects.
    """
    raw = json.loads(text)
    if not isinstance(raw, list):
        raise ValueError("target file must contain a JSON list")
    return [TargetDescriptor.from_dict(entry) for entry in raw]


class TargetStore:
    """Owns the published target file at *path*."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, targets: list[TargetDescriptor]) -> bool:
        """Atomically replace the published file with *targets*.

        Returns False when the file already holds exactly this content and
        was left untouched, True when it was replaced.

        Raises:
            TargetPublishError: the write or rename failed.
        """
        content = serialize_targets(targets)
        encoded = content.encode("utf-8")
        # An unreadable or undecodable file counts as different content.
        try:
            current = self._path.read_bytes()
        except OSError:
            current = None
        if current == encoded:
            _log.debug("targets_unchanged", path=str(self._path), count=len(targets))
            return False

        tmp_path = ""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(encoded)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_path, _FILE_MODE)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            if tmp_path:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
            raise TargetPublishError(f"failed to publish {self._path}: {exc}") from exc

        _log.info("targets_published", path=str(self._path), count=len(targets))
        return True

    def read(self) -> list[TargetDescriptor] | None:
        """Return the published target set, or None if nothing is published yet."""
        content = self._current_content()
        if content is None:
            return None
        return parse_targets(content)

    def _current_content(self) -> str | None:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
