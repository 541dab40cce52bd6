from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

from ..errors import PersistenceError


class PayloadLog:
    """Append-only NDJSON record of every payload handed to the sink."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def append(self, payload: Dict[str, Any]) -> None:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            raise PersistenceError(f"cannot append to {self.path}: {exc}") from exc
