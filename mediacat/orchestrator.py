#!/usr/bin/env python3
"""
Scan orchestrator

Phase sequence for one scan:

    idle -> connecting -> discovering -> processing -> scraping -> completed
                        (any phase) -> error

reset() returns a finished orchestrator to idle. Every item is classified
and persisted before any resolution starts, so an interrupted scrape never
loses classification work. Once the scan reaches completed or error, the
identity sweep (fingerprints, community lookups, duplicate report) runs in
the background as `sweep_task`.

Cancellation is cooperative: cancel() is checked at each phase boundary and
before each folder and item. Resolutions already in flight finish, and
their results are discarded.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from mediacat import events
from mediacat.classifier import CatalogBuilder, item_priority
from mediacat.config import ScanSettings
from mediacat.constants import TERMINAL_PHASES
from mediacat.events import EventEmitter
from mediacat.exceptions import ConfigurationError, ResolutionError, ScanCancelled, StorageError
from mediacat.models import CatalogItem, RawFile, ResolutionResult, ResolutionTask, ScanStatus, utc_now
from mediacat.resolver import call_collaborator
from mediacat.scheduler import TaskScheduler
from mediacat.storage import Storage
from mediacat.store import CatalogStore

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs discovery, classification, resolution and the identity sweep"""

    def __init__(self, storage: Storage, store: CatalogStore, resolver, settings: ScanSettings,
                 identity=None, builder: Optional[CatalogBuilder] = None,
                 emitter: Optional[EventEmitter] = None):
        self.storage = storage
        self.store = store
        self.resolver = resolver
        self.settings = settings
        self.identity = identity
        self.builder = builder or CatalogBuilder()
        self.events = emitter or EventEmitter()

        self._status = ScanStatus()
        self._cancel_requested = False
        self._scheduler: Optional[TaskScheduler] = None
        self.sweep_task: Optional[asyncio.Task] = None

        self.raw_files: List[RawFile] = []
        self.items: List[CatalogItem] = []
        self.results: Dict[str, ResolutionResult] = {}

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    @property
    def status(self) -> ScanStatus:
        return self.get_status()

    def get_status(self) -> ScanStatus:
        """Snapshot; the live status is only ever mutated here"""
        return self._status.snapshot()

    def cancel(self):
        if not self._status.is_scanning:
            return
        logger.info("Scan cancellation requested")
        self._cancel_requested = True
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler.clear()

    def reset(self) -> bool:
        if self._status.is_scanning or self._status.phase not in TERMINAL_PHASES:
            logger.warning(f"Cannot reset while {self._status.phase}")
            return False
        self._status = ScanStatus()
        self._cancel_requested = False
        self._set_phase('idle')
        return True

    async def run_scan(self) -> ScanStatus:
        """Run one full scan; never raises, ends in completed or error"""
        if self._status.is_scanning:
            logger.warning("Scan already running")
            return self.get_status()

        self._status = ScanStatus(
            is_scanning=True,
            start_time=time.monotonic(),
            started_at=utc_now(),
        )
        self._cancel_requested = False
        self.raw_files, self.items, self.results = [], [], {}
        self._emit(events.SCAN_STARTED)

        try:
            await self._connect()
            self.raw_files = await self._discover()
            self.items = await self._process(self.raw_files)
            await self._scrape(self.items)
            self._checkpoint()
        except ScanCancelled:
            self._fail("Scan cancelled")
        except (ConfigurationError, StorageError) as e:
            self._fail(str(e))
        except Exception as e:
            logger.exception("Scan failed")
            self._fail(f"Scan failed: {e}")
        else:
            self._finish()

        self._start_sweep()
        return self.get_status()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _connect(self):
        self._set_phase('connecting')
        if not self.settings.share_path:
            raise ConfigurationError("Share path not configured")
        if hasattr(self.storage, 'connect'):
            await call_collaborator(self.storage.connect)
        self._checkpoint()

    async def _discover(self) -> List[RawFile]:
        self._set_phase('discovering')
        folders = self.settings.folders or ['']
        found: Dict[str, RawFile] = {}

        for folder in folders:
            self._checkpoint()
            self._status.current_item = folder or '/'
            try:
                files = await call_collaborator(self.storage.scan_media_files, folder)
            except Exception as e:
                # Per-folder failures (network drops, symlink loops) skip the folder only
                logger.warning(f"Skipping folder '{folder}': {e}")
                self._status.errors.append(f"{folder or '/'}: {e}")
                continue
            for raw_file in files:
                found.setdefault(raw_file.path, raw_file)
            self._status.total = len(found)
            self._emit(events.PHASE_CHANGED)

        self._status.current_item = None
        logger.info(f"Discovered {len(found)} media files in {len(folders)} folder(s)")
        return list(found.values())

    async def _process(self, raw_files: List[RawFile]) -> List[CatalogItem]:
        self._set_phase('processing')
        items, errors = self.builder.build(raw_files)
        self._status.errors.extend(errors)
        self._status.total = len(items)
        self._status.current = 0

        stored = []
        for item in items:
            self._checkpoint()
            self._status.current_item = item.title
            stored.append(self.store.upsert_item(item))
            self._advance()

        self._status.current_item = None
        return stored

    async def _scrape(self, items: List[CatalogItem]):
        self._set_phase('scraping')
        pending = [item for item in items if not item.is_enriched()]
        self._status.total = len(pending)
        self._status.current = 0
        self._status.estimated_time_remaining = None
        if not pending:
            return
        if self.resolver is None:
            logger.warning("No metadata sources configured, skipping resolution")
            return

        scheduler_events = EventEmitter()
        scheduler_events.subscribe(events.TASK_STARTED, self._on_task_started)
        scheduler_events.subscribe(events.TASK_COMPLETED, self._on_task_completed)
        scheduler_events.subscribe(events.TASK_FAILED, self._on_task_failed)
        self._scheduler = TaskScheduler(
            self._run_task,
            max_concurrency=self.settings.max_concurrency,
            retry_delay=self.settings.retry_delay,
            emitter=scheduler_events,
        )

        for item in pending:
            self._checkpoint()
            self._scheduler.submit(ResolutionTask(
                item_id=item.id,
                item=item.snapshot(),
                priority=item_priority(item),
                max_attempts=self.settings.max_retries,
            ))

        self._scheduler.start()
        try:
            await self._scheduler.wait_drained()
        finally:
            self._scheduler = None

    # ------------------------------------------------------------------
    # Resolution callbacks
    # ------------------------------------------------------------------

    async def _run_task(self, task: ResolutionTask) -> ResolutionResult:
        if self._cancel_requested:
            return ResolutionResult(item_id=task.item_id, success=False, error='cancelled')
        result = await self.resolver.resolve(task.item)
        if not result.success:
            raise ResolutionError(result.error or 'No match', result=result)
        return result

    def _on_task_started(self, payload):
        task = payload['task']
        if task.attempts == 1:
            self._status.current_item = task.item.title
            self._emit(events.ITEM_STARTED, item_id=task.item_id)

    def _on_task_completed(self, payload):
        if self._cancel_requested:
            return
        task, result = payload['task'], payload['result']
        self.results[task.item_id] = result
        if result.success and result.metadata is not None:
            self.store.apply_metadata(task.item_id, result.metadata, result.confidence, result.method)
            self._status.items_resolved += 1
        self._advance()
        self._emit(events.ITEM_COMPLETED, item_id=task.item_id, result=result)

    def _on_task_failed(self, payload):
        if self._cancel_requested:
            return
        task, result = payload['task'], payload['result']
        self.results[task.item_id] = result
        self._status.items_failed += 1
        logger.info(f"Unresolved: '{task.item.title}' ({result.error})")
        self._advance()
        self._emit(events.ITEM_FAILED, item_id=task.item_id, result=result)

    # ------------------------------------------------------------------
    # Identity sweep
    # ------------------------------------------------------------------

    def _start_sweep(self):
        if self.identity is None or not self.settings.enable_identity:
            return
        self.sweep_task = asyncio.get_running_loop().create_task(self._identity_sweep())

    async def _identity_sweep(self):
        try:
            await self.identity.process_items(self.items, self.raw_files)
            duplicates = self.identity.find_duplicates()
        except Exception as e:
            logger.warning(f"Identity sweep failed: {e}")
            return
        self._status.duplicates = duplicates
        if duplicates:
            logger.info(f"Found {len(duplicates)} possible duplicate group(s)")
            self._emit(events.DUPLICATES_FOUND, duplicates=duplicates)

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def _checkpoint(self):
        if self._cancel_requested:
            raise ScanCancelled()

    def _set_phase(self, phase: str):
        self._status.phase = phase
        logger.info(f"Scan phase: {phase}")
        self._emit(events.PHASE_CHANGED)

    def _advance(self):
        self._status.current += 1
        current, total = self._status.current, self._status.total
        if self._status.start_time is not None and 0 < current <= total:
            elapsed = time.monotonic() - self._status.start_time
            self._status.estimated_time_remaining = elapsed / current * (total - current)

    def _finish(self):
        self._status.is_scanning = False
        self._status.current_item = None
        self._status.estimated_time_remaining = 0.0
        self._set_phase('completed')
        logger.info(
            f"Scan completed: {len(self.items)} items, {self._status.items_resolved} resolved, "
            f"{self._status.items_failed} unresolved, {len(self._status.errors)} errors"
        )
        self._emit(events.SCAN_COMPLETED)

    def _fail(self, message: str):
        self._status.is_scanning = False
        self._status.current_item = None
        self._status.errors.append(message)
        self._set_phase('error')
        logger.error(message)
        self._emit(events.SCAN_ERROR, error=message)

    def _emit(self, event_name: str, **extra):
        payload = {'status': self.get_status()}
        payload.update(extra)
        self.events.emit(event_name, payload)
