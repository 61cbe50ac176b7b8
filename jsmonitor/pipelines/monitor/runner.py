"""
Monitor Runner - drives the analysis engine over observed JavaScript payloads.
Filters, classifies and extracts each payload on a worker thread, then clusters,
reports and sends one summary notification per batch cycle.
"""

import asyncio
import threading
import uuid
from datetime import datetime
from fnmatch import fnmatch
from typing import List, Optional, Set
from urllib.parse import urlparse

from jsmonitor.analyzers.change_detector import ChangeDetector
from jsmonitor.analyzers.clustering import SimilarityClusterer
from jsmonitor.analyzers.endpoint_extractor import EndpointExtractor
from jsmonitor.core.config import Config, get_default_config
from jsmonitor.core.errors import RecoverablePayloadError
from jsmonitor.core.logger import logger, set_silent, set_verbose
from jsmonitor.core.utils import format_file_size
from jsmonitor.models import (
    CycleReport, CycleStats, ErrorRecord, EventKind, FileOutcome, FilePayload
)
from jsmonitor.output.report import ReportWriter
from jsmonitor.services.aggregator import NotificationAggregator
from jsmonitor.services.datastore import DataStore
from jsmonitor.services.notifier import WebhookNotifier


class MonitorRunner:

    JS_EXTENSIONS = ('.js', '.mjs', '.jsx', '.ts', '.tsx')
    JS_CONTENT_TYPES = (
        'application/javascript',
        'text/javascript',
        'application/x-javascript',
        'application/ecmascript',
    )
    BINARY_SNIFF_BYTES = 1024

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[DataStore] = None,
        notifier=None,
        silent_mode: bool = False
    ):
        self.config = config or get_default_config()
        self.silent_mode = silent_mode
        if silent_mode:
            set_silent(True)
        elif self.config.verbose:
            set_verbose(True)

        self.store = store or DataStore(self.config.data_dir)
        if notifier is None and self.config.webhook_url:
            notifier = WebhookNotifier(self.config.webhook_url, timeout=self.config.notification_timeout)

        self.detector = ChangeDetector(
            self.store,
            max_lines_per_section=self.config.max_lines_per_section,
            save_diff=self.config.save_diff,
            max_diff_files=self.config.max_diff_files,
            silent_mode=silent_mode
        )
        self.extractor = EndpointExtractor(
            custom_patterns=self.config.custom_endpoint_patterns,
            silent_mode=silent_mode
        )
        self.clusterer = SimilarityClusterer(
            self.store,
            threshold=self.config.similarity_threshold,
            silent_mode=silent_mode
        )
        self.aggregator = NotificationAggregator(
            notifier,
            min_interval=self.config.notification_min_interval,
            silent_mode=silent_mode
        )
        self.reports = ReportWriter(self.store, silent_mode=silent_mode)

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._pending: Set[asyncio.Task] = set()
        self._stats_lock = threading.Lock()
        self._reset_cycle()

    def _reset_cycle(self):
        with self._stats_lock:
            self.cycle_id = f"cycle_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
            self.started_at = datetime.now().isoformat()
            self.stats = CycleStats()
            self.errors: List[ErrorRecord] = []
            self.touched_domains: Set[str] = set()
            self._cancelled = False

    def is_javascript(self, url: str, content_type: Optional[str] = None) -> bool:
        if content_type:
            mime = content_type.split(';')[0].strip().lower()
            if mime in self.JS_CONTENT_TYPES:
                return True
        path = urlparse(url).path.lower()
        return path.endswith(self.JS_EXTENSIONS)

    @staticmethod
    def _matches_any(value: str, patterns: List[str]) -> bool:
        return any(fnmatch(value, pattern) for pattern in patterns)

    def should_process(self, domain: str, url: str, content_type: Optional[str] = None) -> bool:
        cfg = self.config
        if not self.is_javascript(url, content_type):
            return False
        if cfg.include_domains and not self._matches_any(domain, cfg.include_domains):
            return False
        if cfg.exclude_domains and self._matches_any(domain, cfg.exclude_domains):
            return False
        if cfg.include_urls and not self._matches_any(url, cfg.include_urls):
            return False
        if cfg.exclude_urls and self._matches_any(url, cfg.exclude_urls):
            return False
        return True

    def decode_payload(self, data: bytes) -> str:
        if not data:
            raise RecoverablePayloadError("Empty payload")
        if len(data) > self.config.max_file_size:
            raise RecoverablePayloadError(
                f"Payload too large: {format_file_size(len(data))} "
                f"(limit {format_file_size(self.config.max_file_size)})"
            )
        if b'\x00' in data[:self.BINARY_SNIFF_BYTES]:
            raise RecoverablePayloadError("Binary payload")
        return data.decode('utf-8', errors='replace')

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        return self._semaphore

    def submit(
        self,
        domain: str,
        url: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """Schedule one payload; must be called from a running event loop."""
        if self._cancelled:
            logger.debug(f"Runner cancelled, ignoring {url}")
            return None
        payload = FilePayload(domain=domain, url=url, data=data, content_type=content_type)
        task = asyncio.get_running_loop().create_task(self.process(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def process(self, payload: FilePayload) -> FileOutcome:
        async with self._get_semaphore():
            return await asyncio.to_thread(self._analyze, payload)

    def _count(self, **increments: int):
        with self._stats_lock:
            for name, value in increments.items():
                setattr(self.stats, name, getattr(self.stats, name) + value)

    def _analyze(self, payload: FilePayload) -> FileOutcome:
        domain, url = payload.domain, payload.url

        if not self.should_process(domain, url, payload.content_type):
            self._count(filtered=1)
            return FileOutcome(domain=domain, url=url, status="filtered")

        try:
            return self._analyze_file(payload)
        except Exception as e:
            error = ErrorRecord(url=url, type=type(e).__name__, message=str(e))
            with self._stats_lock:
                self.stats.errors += 1
                self.errors.append(error)
            self.aggregator.add_event(EventKind.ERROR, {"domain": domain, **error.to_dict()})
            logger.error(f"Failed to analyze {url}: {error.message}")
            return FileOutcome(domain=domain, url=url, status="error", error=error)

    def _analyze_file(self, payload: FilePayload) -> FileOutcome:
        domain, url = payload.domain, payload.url
        content = self.decode_payload(payload.data)

        with self._stats_lock:
            self.touched_domains.add(domain)

        change = self.detector.classify(domain, url, payload.data)
        outcome = FileOutcome(domain=domain, url=url, status=change.status, change=change)
        if not change.changed:
            self._count(unchanged=1)
            return outcome

        endpoints, degraded = self.extractor.extract_with_status(content, url)
        saved = self.store.save_endpoints(
            domain, url, endpoints,
            max_endpoints=self.config.max_endpoints_per_domain,
            max_files=self.config.max_files_per_domain
        )
        outcome.endpoints = endpoints
        outcome.new_endpoints = saved.new_count
        outcome.degraded = degraded

        if change.is_new:
            outcome.renames = self.clusterer.find_potential_renames(domain, url, content)
            for candidate in outcome.renames:
                if not self.silent_mode:
                    logger.info(
                        f"{url} looks like a rename of {candidate.url} "
                        f"(similarity {candidate.similarity.overall:.2f})"
                    )
        self.clusterer.record_fingerprint(domain, url, content)

        file_size = format_file_size(len(payload.data))
        if change.is_new:
            self.aggregator.add_event(EventKind.NEW_FILE, {
                "domain": domain,
                "url": url,
                "lines": change.total_lines,
                "file_size": file_size,
                "possible_renames": [r.url for r in outcome.renames]
            })
        else:
            self.aggregator.add_event(EventKind.FILE_CHANGED, {
                "domain": domain,
                "url": url,
                "added_lines": change.diff_stats.added_lines,
                "removed_lines": change.diff_stats.removed_lines,
                "total_lines": change.total_lines,
                "file_size": file_size,
                "new_code_sections": change.section_count
            })
        if saved.new_count:
            summary = saved.summary
            self.aggregator.add_event(EventKind.ENDPOINTS_FOUND, {
                "domain": domain,
                "url": url,
                "total_endpoints": saved.count,
                "new_endpoints": saved.new_count,
                "high_confidence": summary.high,
                "medium_confidence": summary.medium,
                "low_confidence": summary.low
            })

        self._count(
            new=1 if change.is_new else 0,
            changed=0 if change.is_new else 1,
            degraded=1 if degraded else 0,
            new_code_sections=change.section_count,
            endpoints=len(endpoints),
            new_endpoints=saved.new_count
        )
        return outcome

    def cancel(self):
        """Reject further submissions until the current cycle finishes."""
        self._cancelled = True
        if not self.silent_mode:
            logger.info(f"Runner cancelled, {len(self._pending)} payloads still in flight")

    async def finish_cycle(self) -> CycleReport:
        if self._pending:
            await asyncio.gather(*list(self._pending))

        report = CycleReport(cycle_id=self.cycle_id, started_at=self.started_at)

        for domain in sorted(self.touched_domains):
            try:
                cluster_report = await asyncio.to_thread(self.clusterer.cluster, domain)
                report.clusters[domain] = cluster_report
                self.reports.write_similarity_report(cluster_report)
                self.reports.write_endpoint_report(domain)
            except Exception as e:
                error = ErrorRecord(url=domain, type=type(e).__name__, message=str(e))
                self.errors.append(error)
                self.stats.errors += 1
                logger.error(f"Cycle reporting failed for {domain}: {error.message}")

        report.notification_sent = await self.aggregator.flush()
        report.stats = self.stats
        report.errors = list(self.errors)
        report.completed_at = datetime.now().isoformat()
        self.reports.write_cycle_report(report)

        if not self.silent_mode:
            stats = report.stats
            logger.info(
                f"Cycle {report.cycle_id} complete: {stats.new} new, {stats.changed} changed, "
                f"{stats.unchanged} unchanged, {stats.filtered} filtered, {stats.errors} errors"
            )
            logger.info(f"Endpoints: {stats.endpoints} found, {stats.new_endpoints} new")

        self._reset_cycle()
        return report
