"""Read launcher metadata files (one JSON object per spawned session)."""
from __future__ import annotations

import json
import logging
import stat
from pathlib import Path

from pydantic import ValidationError

from agentviz.models import LauncherMetadata
from agentviz.observability import record_parser_failure

logger = logging.getLogger("agentviz.launcher")

ARCHIVE_DIR_NAME = "archive"


def is_metadata_file(path: Path, metadata_dir: Path | None = None) -> bool:
    """True for ``*.json`` files that are neither dotfiles nor archived."""
    if path.suffix != ".json":
        return False
    parts = path.parts
    if metadata_dir is not None:
        try:
            parts = path.relative_to(metadata_dir).parts
        except ValueError:
            pass
    if any(part.startswith(".") for part in parts):
        return False
    if ARCHIVE_DIR_NAME in parts[:-1]:
        return False
    return True


def parse_metadata_file(path: Path) -> LauncherMetadata | None:
    """Parse one metadata file; unreadable or invalid files are logged and skipped."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Skipping unreadable metadata file %s: %s", path, exc)
        record_parser_failure("launcher_metadata")
        return None

    if not isinstance(payload, dict):
        logger.warning("Skipping metadata file %s: expected a JSON object", path)
        record_parser_failure("launcher_metadata")
        return None

    try:
        return LauncherMetadata(**payload)
    except ValidationError as exc:
        logger.warning("Skipping metadata file %s: %s", path, exc.errors()[:3])
        record_parser_failure("launcher_metadata")
        return None


def scan_metadata_dir(metadata_dir: Path) -> list[tuple[Path, LauncherMetadata]]:
    """Return every valid metadata file in the directory, oldest first."""
    if not metadata_dir.exists():
        return []
    found: list[tuple[Path, LauncherMetadata]] = []
    dated: list[tuple[float, Path]] = []
    for path in metadata_dir.iterdir():
        if not is_metadata_file(path, metadata_dir):
            continue
        try:
            stats = path.stat()
        except OSError as exc:
            logger.warning("Skipping metadata file %s: %s", path, exc)
            continue
        if stat.S_ISREG(stats.st_mode):
            dated.append((stats.st_mtime, path))
    for _, path in sorted(dated, key=lambda item: item[0]):
        metadata = parse_metadata_file(path)
        if metadata is not None:
            found.append((path, metadata))
    return found
