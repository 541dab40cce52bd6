from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from .engines.base import ScanStatus

logger = logging.getLogger(__name__)


def _canonical(value: Any) -> Any:
    if isinstance(value, Decimal):
        # 12.5 and 12.50 are the same price.
        return format(value.normalize(), "f")
    if isinstance(value, ScanStatus):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"cannot hash value of type {type(value).__name__}")


def compute_hash(status: ScanStatus | str, price: Optional[Decimal], details: Any) -> str:
    """
    Content digest of one observation. Mapping key order does not matter:
    the payload is serialized with sorted keys before hashing.
    """
    payload = {
        "status": status.value if isinstance(status, ScanStatus) else status,
        "price": _canonical(price) if price is not None else None,
        "details": details,
    }
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_canonical)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ChangeRecord:
    key: str
    digest: str
    updated_at: datetime


class ChangeDetector:
    """
    Remembers the digest of the last forwarded observation per key.

    Starts empty. The map is a cache, not a source of truth: losing it costs
    at most one duplicate forward per key. ``is_changed_and_update`` is the
    only way to mutate it.
    """

    compute_hash = staticmethod(compute_hash)

    def __init__(self) -> None:
        self._records: Dict[str, ChangeRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def get(self, key: str) -> Optional[ChangeRecord]:
        with self._lock:
            return self._records.get(key)

    def is_changed_and_update(self, key: str, digest: str) -> bool:
        with self._lock:
            record = self._records.get(key)
            if record is not None and record.digest == digest:
                return False
            self._records[key] = ChangeRecord(key, digest, datetime.now(timezone.utc))
            return True

    # ---- Snapshots ----

    def save(self, path: str | os.PathLike[str]) -> None:
        """Write the key -> digest map as JSON (atomic replace)."""
        with self._lock:
            data = {key: record.digest for key, record in self._records.items()}
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, target)

    def load(self, path: str | os.PathLike[str]) -> int:
        """
        Seed the map from a snapshot written by ``save``.
        A missing or unreadable snapshot leaves the detector as it is.
        """
        target = Path(path)
        if not target.is_file():
            return 0
        try:
            with open(target, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable hash snapshot %s: %r", target, exc)
            return 0
        if not isinstance(data, dict):
            logger.warning("Ignoring hash snapshot %s: expected an object", target)
            return 0

        now = datetime.now(timezone.utc)
        loaded = 0
        with self._lock:
            for key, digest in data.items():
                if isinstance(key, str) and isinstance(digest, str):
                    self._records[key] = ChangeRecord(key, digest, now)
                    loaded += 1
        logger.info("Loaded %d change record(s) from %s", loaded, target)
        return loaded
