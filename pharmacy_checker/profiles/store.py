from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import SiteProfile

logger = logging.getLogger(__name__)

PROFILE_SUFFIXES = (".json", ".yaml", ".yml")


class ProfileStore:
    """
    Loads site profiles from a directory.
    One broken file never blocks the others: it is skipped and reported in ``errors``.
    """

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        self.directory = Path(directory) if directory is not None else None
        self.errors: List[ConfigError] = []

    # ---- Loading ----

    def load_all(self, directory: str | os.PathLike[str] | None = None) -> List[SiteProfile]:
        base = Path(directory) if directory is not None else self.directory
        if base is None:
            raise ConfigError("no profile directory configured")

        self.errors = []
        if not base.is_dir():
            logger.warning("Profile directory %s does not exist; nothing to scan", base)
            return []

        files = self.profile_files(base)
        logger.debug("Found %d profile file(s) in %s", len(files), base)

        profiles: List[SiteProfile] = []
        seen: Dict[str, Path] = {}
        for path in files:
            try:
                profile = self.load_file(path)
            except ConfigError as exc:
                self.errors.append(exc)
                logger.error("Skipping profile: %s", exc)
                continue

            if profile.id in seen:
                exc = ConfigError(f"duplicate profile id {profile.id!r} (already loaded from {seen[profile.id].name})", str(path))
                self.errors.append(exc)
                logger.error("Skipping profile: %s", exc)
                continue

            seen[profile.id] = path
            profiles.append(profile)
            logger.info("Loaded profile id=%s file=%s", profile.id, path.name)
        return profiles

    def load_file(self, path: str | os.PathLike[str]) -> SiteProfile:
        path = Path(path)
        try:
            raw = self._read(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot parse profile: {exc}", str(path)) from exc

        if not isinstance(raw, dict):
            raise ConfigError("profile must be a mapping at the top level", str(path))

        try:
            return SiteProfile.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(_summarize(exc), str(path)) from exc

    # ---- Helpers ----

    @staticmethod
    def profile_files(base: Path) -> List[Path]:
        # Lexicographic order keeps scheduling deterministic.
        return sorted(
            (
                p
                for p in base.iterdir()
                if p.is_file()
                and p.suffix.lower() in PROFILE_SUFFIXES
                and ".disabled" not in p.name
                and not p.name.lower().startswith("sample")
            ),
            key=lambda p: p.name,
        )

    @staticmethod
    def _read(path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                return json.load(f)
            return yaml.safe_load(f)


def _summarize(exc: ValidationError) -> str:
    parts: Sequence[str] = [
        f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()
    ]
    return "; ".join(parts)
