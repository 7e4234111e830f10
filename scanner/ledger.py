"""
Alert ledger: symbols already surfaced in a prior run.

Loaded fully at run start, mutated by the orchestrator (one serialization
point), and overwritten wholesale at run end. Last writer wins; there is
no merge across concurrent runs.

Persisted document::

    {
        "lastUpdated": "<ISO-8601>",
        "version": 7,
        "alerted": ["BTC", "SOL"],
        "alertedAt": {"BTC": "<ISO-8601>", "SOL": "<ISO-8601>"}
    }

Only ``alerted`` is required on load; a bare JSON list of symbols is also
accepted.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Union

from scanner.snapshot import atomic_write_json

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class AlertLedger:
    """
    Versioned set of alerted symbols.

    ``version`` increments on every mutation that changes the set, so
    callers can tell whether a save is needed.
    """

    def __init__(
        self,
        path: Optional[PathLike] = None,
        alerted: Optional[Iterable[str]] = None,
        alerted_at: Optional[Dict[str, str]] = None,
        version: int = 0,
        last_updated: Optional[str] = None,
    ):
        self.path = Path(path) if path is not None else None
        self._alerted = {s.upper() for s in (alerted or [])}
        self._alerted_at: Dict[str, str] = {
            k.upper(): v for k, v in (alerted_at or {}).items() if k.upper() in self._alerted
        }
        self.version = version
        self.last_updated = last_updated
        self._loaded_version = version

    @classmethod
    def load(cls, path: PathLike, expiry_hours: Optional[float] = None) -> 'AlertLedger':
        """
        Load the ledger from disk.

        Missing file -> empty ledger. Corrupt file -> warning, empty ledger.

        Args:
            path: Ledger document path
            expiry_hours: Release symbols alerted longer ago than this
                (None = permanent dedup)
        """
        path = Path(path)
        if not path.exists():
            logger.info(f"No alert ledger at {path}, starting empty")
            return cls(path=path)

        try:
            data = json.loads(path.read_text())
            if isinstance(data, list):
                # Bare symbol list
                data = {'alerted': data}
            ledger = cls(
                path=path,
                alerted=data.get('alerted', []),
                alerted_at=data.get('alertedAt', {}),
                version=int(data.get('version', 0)),
                last_updated=data.get('lastUpdated'),
            )
        except (json.JSONDecodeError, OSError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to read alert ledger {path}: {e}; starting empty")
            return cls(path=path)

        if expiry_hours is not None:
            released = ledger.expire(expiry_hours)
            if released:
                logger.info(f"Alert ledger released {released} expired symbols")

        logger.debug(f"Alert ledger loaded: {len(ledger)} symbols (v{ledger.version})")
        return ledger

    @property
    def symbols(self) -> FrozenSet[str]:
        return frozenset(self._alerted)

    @property
    def is_dirty(self) -> bool:
        """True when mutated since load or last save."""
        return self.version != self._loaded_version

    def __contains__(self, symbol: str) -> bool:
        return symbol.upper() in self._alerted

    def __len__(self) -> int:
        return len(self._alerted)

    def should_alert(self, symbol: str) -> bool:
        """True iff the symbol has not been surfaced before."""
        return symbol.upper() not in self._alerted

    def record(self, symbol: str, now: Optional[datetime] = None) -> bool:
        """
        Idempotently add a symbol.

        Returns:
            True if the symbol was newly added
        """
        key = symbol.upper()
        if key in self._alerted:
            return False
        now = now or datetime.now(timezone.utc)
        self._alerted.add(key)
        self._alerted_at[key] = now.isoformat()
        self.version += 1
        return True

    def clear(self) -> None:
        """External reset: forget every symbol."""
        if self._alerted:
            self._alerted.clear()
            self._alerted_at.clear()
            self.version += 1

    def expire(self, expiry_hours: float, now: Optional[datetime] = None) -> int:
        """
        Release symbols alerted more than ``expiry_hours`` ago.

        Symbols without a recorded timestamp are kept.

        Returns:
            Number of symbols released
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=expiry_hours)
        expired = []

        for symbol, stamp in self._alerted_at.items():
            try:
                alerted_time = datetime.fromisoformat(stamp)
            except (TypeError, ValueError):
                continue
            if alerted_time.tzinfo is None:
                alerted_time = alerted_time.replace(tzinfo=timezone.utc)
            if alerted_time < cutoff:
                expired.append(symbol)

        for symbol in expired:
            self._alerted.discard(symbol)
            del self._alerted_at[symbol]

        if expired:
            self.version += 1
        return len(expired)

    def to_dict(self) -> Dict:
        return {
            'lastUpdated': self.last_updated,
            'version': self.version,
            'alerted': sorted(self._alerted),
            'alertedAt': dict(sorted(self._alerted_at.items())),
        }

    def save(self, path: Optional[PathLike] = None) -> None:
        """Overwrite the ledger document wholesale."""
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("AlertLedger.save() needs a path")

        self.last_updated = datetime.now(timezone.utc).isoformat()
        atomic_write_json(target, self.to_dict())
        self._loaded_version = self.version
        logger.debug(f"Alert ledger saved: {target} ({len(self)} symbols, v{self.version})")


def load_ledger(path: PathLike, expiry_hours: Optional[float] = None) -> AlertLedger:
    return AlertLedger.load(path, expiry_hours=expiry_hours)


def should_alert(ledger: AlertLedger, symbol: str) -> bool:
    return ledger.should_alert(symbol)


def record_alert(ledger: AlertLedger, symbol: str) -> bool:
    return ledger.record(symbol)


def save_ledger(ledger: AlertLedger, path: Optional[PathLike] = None) -> None:
    ledger.save(path)
