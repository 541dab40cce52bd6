from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .observations import Observation, build_observations
from .scanner import SiteScanner
from ..change_detector import ChangeDetector
from ..config import ScannerConfig
from ..errors import ConfigError, DeliveryError, PersistenceError
from ..export.base import Sink
from ..export.payload_log import PayloadLog
from ..profiles.models import SiteProfile
from ..profiles.store import ProfileStore
from ..utils.loader import load_symbol

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PassReport:
    sites: int = 0
    units: int = 0
    failed_units: int = 0
    forwarded: int = 0
    suppressed: int = 0
    delivery_failures: int = 0
    persistence_failures: int = 0
    cancelled: bool = False


class ScanScheduler:
    """
    The scan worker loop.

    - One (site, product) unit at a time, sites in load order, products in
      configured order. Multi-row results are handled row by row.
    - Every unit and every observation has its own error boundary; only the
      stop event ends the loop early.
    - Waits (rate limit, poll interval) and in-flight scans are raced against
      the stop event so a stop request takes effect promptly.
    """

    def __init__(
        self,
        config: ScannerConfig,
        store: ProfileStore,
        scanner: SiteScanner,
        sink: Sink,
        *,
        detector: Optional[ChangeDetector] = None,
        payload_log: Optional[PayloadLog] = None,
        stop_event: Optional[asyncio.Event] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.store = store
        self.scanner = scanner
        self.sink = sink
        self.detector = detector if detector is not None else ChangeDetector()
        self.payload_log = payload_log or PayloadLog(config.payload_log_path)
        self.stop_event = stop_event or asyncio.Event()
        self.clock = clock

    @classmethod
    def from_config(cls, config: ScannerConfig, stop_event: Optional[asyncio.Event] = None) -> "ScanScheduler":
        # Dynamic session factory + sink loading so implementations can be swapped without code edits.
        factory_cls = load_symbol(config.session_factory)
        sink_cls = load_symbol(config.sink)
        return cls(
            config,
            ProfileStore(config.profiles_dir),
            SiteScanner.from_factory(factory_cls(config)),
            sink_cls(config),
            stop_event=stop_event,
        )

    # ---- Lifecycle ----

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    async def run(self) -> int:
        """Scan until stopped (or once, in single-shot mode). Returns the number of passes run."""
        logger.info(
            "Scan worker starting products=%d interval=%ss run_once=%s",
            len(self.config.products),
            self.config.poll_interval_seconds,
            self.config.run_once,
        )
        if self.config.hash_state_file is not None:
            self.detector.load(self.config.hash_state_file)

        passes = 0
        try:
            while not self.stopping:
                await self.run_pass()
                passes += 1
                self._save_hashes()
                if self.config.run_once:
                    logger.info("Run-once set; exiting after a single pass")
                    break
                if not await self.wait(self.config.poll_interval_seconds):
                    break
        finally:
            await self.sink.close()
        logger.info("Scan worker stopping after %d pass(es)", passes)
        return passes

    async def run_pass(self) -> PassReport:
        report = PassReport()
        profiles = self._load_profiles()
        report.sites = len(profiles)
        units = [(profile, product) for profile in profiles for product in self.config.products]

        for index, (profile, product) in enumerate(units):
            if self.stopping:
                report.cancelled = True
                break
            await self._scan_unit(profile, product, report)
            if index == len(units) - 1:
                break
            delay = self.config.rate_limit_for(profile.rate_limit_seconds)
            if delay > 0 and not await self.wait(delay):
                report.cancelled = True
                break

        logger.info(
            "Pass finished sites=%d units=%d failed=%d forwarded=%d suppressed=%d delivery_failures=%d cancelled=%s",
            report.sites,
            report.units,
            report.failed_units,
            report.forwarded,
            report.suppressed,
            report.delivery_failures,
            report.cancelled,
        )
        return report

    # ---- Units ----

    def _load_profiles(self) -> List[SiteProfile]:
        try:
            profiles = self.store.load_all(self.config.profiles_dir)
        except ConfigError as exc:
            logger.error("Cannot load profiles: %s", exc)
            return []
        if self.config.profile_ids:
            wanted = set(self.config.profile_ids)
            profiles = [p for p in profiles if p.id in wanted]
        logger.info("Loaded %d profile(s) from %s", len(profiles), self.config.profiles_dir)
        return profiles

    async def _scan_unit(self, profile: SiteProfile, product: str, report: PassReport) -> None:
        logger.info("Scanning site=%s product=%r", profile.id, product)
        try:
            result = await self.until_stopped(self.scanner.scan(profile, product))
            if result is None:
                report.cancelled = True
                return
            observations = build_observations(profile, product, result)
        except Exception:  # per-unit boundary: no observation this cycle
            report.failed_units += 1
            logger.exception("Scan crashed site=%s product=%r", profile.id, product)
            return

        report.units += 1
        for observation in observations:
            try:
                await self._handle(observation, report)
            except Exception:  # one bad row never affects its siblings
                logger.exception("Handling observation key=%s failed", observation.key)

    async def _handle(self, observation: Observation, report: PassReport) -> None:
        digest = self.detector.compute_hash(observation.status, observation.price, observation.details)
        if not self.detector.is_changed_and_update(observation.key, digest):
            report.suppressed += 1
            logger.debug("No change key=%s, skipping delivery", observation.key)
            return

        report.forwarded += 1
        payload = observation.to_payload(self.clock())
        logger.info(
            "Change detected key=%s status=%s price=%s",
            observation.key,
            observation.status.value,
            observation.price,
        )

        # Durable record first, so a failed delivery never loses the change.
        try:
            self.payload_log.append(payload)
        except PersistenceError as exc:
            report.persistence_failures += 1
            logger.debug("Failed to persist payload locally: %s", exc)

        try:
            await self.until_stopped(self.sink.deliver(payload))
        except DeliveryError as exc:
            report.delivery_failures += 1
            logger.warning("Delivery failed key=%s: %s", observation.key, exc)
        else:
            if self.stopping:
                logger.info("Delivery of key=%s interrupted by stop request", observation.key)
            else:
                logger.info("Delivered key=%s", observation.key)

    def _save_hashes(self) -> None:
        path = self.config.hash_state_file
        if path is None:
            return
        try:
            self.detector.save(path)
        except OSError as exc:
            logger.warning("Could not save change snapshot to %s: %r", path, exc)

    # ---- Cancellable waits ----

    async def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns False as soon as a stop is requested."""
        if self.stopping:
            return False
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def until_stopped(self, awaitable: Awaitable[T]) -> Optional[T]:
        """Await ``awaitable`` unless a stop arrives first; then cancel it and return None."""
        task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self.stop_event.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            # Let the task unwind (sessions close in its finally blocks) before propagating.
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            stopper.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("In-flight work cancelled by stop request")
        return None
