"""
Snapshot writer.

Serializes the scored result set for one asset class, plus a timestamp,
to a JSON document the dashboard polls:

    {"lastUpdated": "<ISO-8601>", "data": [...], "error": "<optional>"}

Writes are whole-file replacements done atomically (write ``.tmp`` then
``os.replace``), so a reader never sees a half-written document.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from scanner.models import ScoredAsset

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def atomic_write_json(path: PathLike, data: Dict[str, Any]) -> None:
    """Write JSON atomically (write .tmp then os.replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(path.suffix + '.tmp')
    try:
        tmp_path.write_text(json.dumps(data, indent=2))
        os.replace(str(tmp_path), str(path))
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


def read_snapshot(path: PathLike) -> Optional[Dict[str, Any]]:
    """
    Read a snapshot document.

    Returns:
        The parsed document, or None when the file is absent ("not yet run")
        or unreadable
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Unreadable snapshot {path}: {e}")
        return None
    if not isinstance(data, dict) or 'data' not in data:
        return None
    return data


def is_valid_snapshot(path: PathLike) -> bool:
    """True when a parseable, error-free snapshot exists at ``path``."""
    data = read_snapshot(path)
    return data is not None and not data.get('error')


class SnapshotWriter:
    """
    Writes success and failure snapshots.

    With ``preserve_last_good`` (default) a failure snapshot only replaces
    a missing, unreadable or already-failed document; a last known good
    snapshot stays in place.
    """

    def __init__(self, preserve_last_good: bool = True, dry_run: bool = False):
        self.preserve_last_good = preserve_last_good
        self.dry_run = dry_run

    def write_snapshot(self, path: PathLike, assets: Sequence[ScoredAsset]) -> Dict[str, Any]:
        """Serialize ``{lastUpdated, data}`` and replace the file."""
        document = {
            'lastUpdated': utc_now_iso(),
            'data': [asset.to_dict() for asset in assets],
        }
        if self.dry_run:
            logger.info(f"Dry run: snapshot {path} not written ({len(assets)} assets)")
            return document

        atomic_write_json(path, document)
        logger.info(f"Snapshot written: {path} ({len(assets)} assets)")
        return document

    def write_failure_snapshot(self, path: PathLike, error_message: str) -> bool:
        """
        Serialize ``{lastUpdated, data: [], error}``.

        Returns:
            True if the failure document was written
        """
        if self.preserve_last_good and is_valid_snapshot(path):
            logger.warning(
                f"Run failed ({error_message}); keeping last good snapshot {path}"
            )
            return False

        document = {
            'lastUpdated': utc_now_iso(),
            'data': [],
            'error': error_message,
        }
        if self.dry_run:
            logger.info(f"Dry run: failure snapshot {path} not written")
            return False

        atomic_write_json(path, document)
        logger.warning(f"Failure snapshot written: {path} ({error_message})")
        return True


def write_snapshot(path: PathLike, scored_assets: Sequence[ScoredAsset]) -> None:
    SnapshotWriter().write_snapshot(path, scored_assets)


def write_failure_snapshot(path: PathLike, error_message: str) -> None:
    SnapshotWriter().write_failure_snapshot(path, error_message)
