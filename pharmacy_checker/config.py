from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any
from pathlib import Path
import os
import json

from .errors import ConfigError
from .version import CONFIG_SCHEMA_VERSION

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ScannerConfig:
    """
    Canonical configuration object for the scan worker.
    Keep it dataclass-only (no heavy deps) so it loads before anything else.
    """
    schema_version: int = CONFIG_SCHEMA_VERSION
    profiles_dir: str = "config/pharmacies"
    # Only scan these profile ids (empty = all loaded profiles)
    profile_ids: List[str] = field(default_factory=list)
    products: List[str] = field(default_factory=list)
    poll_interval_seconds: float = 900.0
    run_once: bool = False
    default_rate_limit_seconds: float = 2.0
    backend_url: str = "http://localhost:5000"
    backend_timeout: float = 30.0
    payload_log_path: str = "state/sent_payloads.ndjson"
    # Empty string disables the change-detector snapshot
    hash_state_path: str = "state/last_hashes.json"
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "sk-SK"
    timezone_id: str = "Europe/Bratislava"
    # Dotted paths so the browser and the sink can be swapped without code changes.
    session_factory: str = "pharmacy_checker.engines.browser_engine:PlaywrightSessionFactory"
    sink: str = "pharmacy_checker.export.http_sink:BackendSink"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """
        Build config from environment variables (all optional).
        """
        def _get(name: str, default: str) -> str:
            return os.getenv(name, default)

        defaults = cls()
        try:
            return cls(
                profiles_dir=_get("PHARMACY_PROFILES_DIR", defaults.profiles_dir),
                profile_ids=_split(_get("PHARMACY_PROFILE_IDS", "")),
                products=_split(_get("PHARMACY_PRODUCTS", "")),
                poll_interval_seconds=float(_get("PHARMACY_SCAN_INTERVAL_SECONDS", "900")),
                run_once=_flag(_get("PHARMACY_RUN_ONCE", "false")),
                default_rate_limit_seconds=float(_get("PHARMACY_DEFAULT_RATE_LIMIT_SECONDS", "2")),
                backend_url=_get("PHARMACY_BACKEND_URL", defaults.backend_url),
                backend_timeout=float(_get("PHARMACY_BACKEND_TIMEOUT", "30")),
                payload_log_path=_get("PHARMACY_PAYLOAD_LOG", defaults.payload_log_path),
                hash_state_path=_get("PHARMACY_HASH_STATE", defaults.hash_state_path),
                headless=_get("PHARMACY_HEADLESS", "true").strip().lower() != "false",
                user_agent=_get("PHARMACY_USER_AGENT", defaults.user_agent),
                session_factory=_get("PHARMACY_SESSION_FACTORY", defaults.session_factory),
                sink=_get("PHARMACY_SINK", defaults.sink),
            )
        except ValueError as exc:
            raise ConfigError(f"invalid environment setting: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "ScannerConfig":
        """
        Load configuration from a JSON file. Supports schema migration for future versions.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"cannot read config: {exc}", str(path)) from exc
        if not isinstance(data, dict):
            raise ConfigError("config must be a JSON object", str(path))
        data = migrate_config(data)
        try:
            return cls(**data)
        except TypeError as exc:
            raise ConfigError(str(exc), str(path)) from exc

    # ---------- Validation ----------

    def validate(self) -> None:
        if not self.products:
            raise ConfigError("products cannot be empty; provide at least one product query.")
        if self.poll_interval_seconds <= 0:
            raise ConfigError("poll_interval_seconds must be > 0")
        if self.default_rate_limit_seconds < 0:
            raise ConfigError("default_rate_limit_seconds must be >= 0")
        if self.backend_timeout <= 0:
            raise ConfigError("backend_timeout must be > 0")
        if not self.backend_url.startswith(("http://", "https://")):
            raise ConfigError(f"backend_url must be an http(s) URL, got {self.backend_url!r}")

    def rate_limit_for(self, seconds: Optional[float]) -> float:
        return self.default_rate_limit_seconds if seconds is None else seconds

    @property
    def hash_state_file(self) -> Optional[Path]:
        return Path(self.hash_state_path) if self.hash_state_path else None


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate config dict to the latest schema version.
    Keep this pure and additive. Add migrations here as you bump schema.
    """
    raw = dict(raw)
    # Key names used by the previous worker's appsettings.
    renames = {
        "ScanIntervalSeconds": "poll_interval_seconds",
        "RunOnce": "run_once",
        "Products": "products",
        "BackendApiUrl": "backend_url",
    }
    for old, new in renames.items():
        if old in raw:
            raw.setdefault(new, raw.pop(old))

    raw.setdefault("schema_version", CONFIG_SCHEMA_VERSION)
    return raw
