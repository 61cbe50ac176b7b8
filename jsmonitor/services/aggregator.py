"""
Per-cycle notification batching.
Collects events during a cycle, then sends one deduplicated, rate-limited summary.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any, Optional, Callable, Union

from jsmonitor.core.errors import DeliveryError
from jsmonitor.core.logger import logger
from jsmonitor.core.utils import short_name
from jsmonitor.models import EventKind, NotificationBatch


COLOR_CHANGES = 0x00ff00
COLOR_ERRORS = 0xff0000
COLOR_NEUTRAL = 0x808080

MAX_NEW_FILES = 5
MAX_CHANGED_FILES = 5
MAX_ENDPOINT_FILES = 8
MAX_ERRORS = 3


@dataclass
class QueuedSummary:
    payload: Dict[str, Any]
    signature: str
    queued_at: float


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _confidence_totals(summaries: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "high": sum(s.get("high_confidence", 0) for s in summaries),
        "medium": sum(s.get("medium_confidence", 0) for s in summaries),
        "low": sum(s.get("low_confidence", 0) for s in summaries),
    }


def build_summary(batch: NotificationBatch, group_by_domain: bool = False) -> Dict[str, Any]:
    """Render a batch as a single webhook embed."""
    timestamp = datetime.now().isoformat()
    total_changes = len(batch.new_files) + len(batch.changed_files)
    total_endpoints = sum(s.get("new_endpoints", 0) for s in batch.endpoint_summaries)
    totals = _confidence_totals(batch.endpoint_summaries)

    if total_changes or total_endpoints:
        parts = []
        if total_changes:
            parts.append(_plural(total_changes, "Change"))
        if total_endpoints:
            parts.append(_plural(total_endpoints, "Endpoint"))
        title = f"Scan Summary - {', '.join(parts)} Detected"
        color = COLOR_CHANGES
        described = []
        if total_changes:
            described.append("JavaScript files have been updated")
        if total_endpoints:
            described.append("new API endpoints discovered")
        description = f"{' and '.join(described)}. Check the details below."
    elif batch.errors:
        title = f"Scan Summary - {_plural(len(batch.errors), 'Error')} Occurred"
        color = COLOR_ERRORS
        description = "Scan completed with errors. No changes or endpoints detected."
    else:
        title = "Scan Summary"
        color = COLOR_NEUTRAL
        description = "Scan completed."

    fields = []

    if batch.new_files:
        lines = []
        for f in batch.new_files[:MAX_NEW_FILES]:
            line = f"• **{short_name(f['url'], 60)}** ({f.get('lines', 0)} lines)"
            renames = f.get("possible_renames") or []
            if renames:
                line += f", likely renamed from {short_name(renames[0], 60)}"
            lines.append(line)
        if len(batch.new_files) > MAX_NEW_FILES:
            lines.append(f"+ {len(batch.new_files) - MAX_NEW_FILES} more files...")
        fields.append({"name": f"New Files ({len(batch.new_files)})", "value": "\n".join(lines), "inline": False})

    if batch.changed_files:
        lines = [
            f"• **{f['url']}** (+{f.get('added_lines', 0)}/-{f.get('removed_lines', 0)} lines)"
            for f in batch.changed_files[:MAX_CHANGED_FILES]
        ]
        if len(batch.changed_files) > MAX_CHANGED_FILES:
            lines.append(f"+ {len(batch.changed_files) - MAX_CHANGED_FILES} more files...")
        fields.append({"name": f"Changed Files ({len(batch.changed_files)})", "value": "\n".join(lines), "inline": False})

    if batch.endpoint_summaries:
        lines = [
            f"• **{short_name(s['url'])}** - {s.get('new_endpoints', 0)} new "
            f"(H:{s.get('high_confidence', 0)} M:{s.get('medium_confidence', 0)} L:{s.get('low_confidence', 0)})"
            for s in batch.endpoint_summaries[:MAX_ENDPOINT_FILES]
        ]
        if len(batch.endpoint_summaries) > MAX_ENDPOINT_FILES:
            lines.append(f"+ {len(batch.endpoint_summaries) - MAX_ENDPOINT_FILES} more files with endpoints...")
        lines.append("")
        lines.append(f"**Confidence Breakdown:** H:{totals['high']} M:{totals['medium']} L:{totals['low']}")
        fields.append({
            "name": f"API Endpoints Discovered ({total_endpoints} total)",
            "value": "\n".join(lines),
            "inline": False
        })

    if batch.errors:
        lines = []
        for error in batch.errors[:MAX_ERRORS]:
            message = error.get("message", "")
            if len(message) > 100:
                message = message[:100] + "..."
            name = short_name(error["url"], 60) if error.get("url") else "Unknown"
            lines.append(f"• **{name}**: {message}")
        if len(batch.errors) > MAX_ERRORS:
            lines.append(f"+ {len(batch.errors) - MAX_ERRORS} more errors...")
        fields.append({"name": f"Errors ({len(batch.errors)})", "value": "\n".join(lines), "inline": False})

    if total_changes or total_endpoints:
        changed = batch.new_files + batch.changed_files
        total_lines = sum(f.get("added_lines") or f.get("lines") or 0 for f in changed)
        domains = {item.get("domain") for item in changed + batch.endpoint_summaries}
        stats = [
            f"**Scan Time:** {timestamp.split('T')[1].split('.')[0]}",
            f"**Domains Affected:** {len(domains)}"
        ]
        if total_lines:
            stats.append(f"**Total Lines Added:** {total_lines}")
        if total_endpoints:
            stats.append(f"**High Confidence:** {totals['high']}")
            stats.append(f"**Medium Confidence:** {totals['medium']}")
            stats.append(f"**Low Confidence:** {totals['low']}")
        fields.append({"name": "Statistics", "value": "\n".join(stats), "inline": True})

    if group_by_domain:
        per_domain: Dict[str, Dict[str, int]] = {}
        for key, items in (("new", batch.new_files), ("changed", batch.changed_files),
                           ("errors", batch.errors)):
            for item in items:
                counts = per_domain.setdefault(item.get("domain") or "unknown", {})
                counts[key] = counts.get(key, 0) + 1
        for domain in sorted(per_domain):
            counts = per_domain[domain]
            fields.append({
                "name": domain,
                "value": ", ".join(f"{k}: {v}" for k, v in sorted(counts.items())),
                "inline": True
            })

    return {
        "embeds": [{
            "title": title,
            "description": description,
            "color": color,
            "fields": fields,
            "footer": {"text": "jsmonitor summary"},
            "timestamp": timestamp
        }]
    }


class NotificationAggregator:

    MAX_QUEUE = 20
    QUEUE_TTL = 3600.0
    DEFAULT_RETRY_AFTER = 60.0

    def __init__(
        self,
        notifier=None,
        min_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        group_by_domain: bool = False,
        silent_mode: bool = False
    ):
        self.notifier = notifier
        self.min_interval = min_interval
        self.clock = clock
        self.group_by_domain = group_by_domain
        self.silent_mode = silent_mode

        self._lock = threading.Lock()
        self._batch = NotificationBatch()
        self._queue: List[QueuedSummary] = []
        self._last_signature: Optional[str] = None
        self._last_sent_at: Optional[float] = None
        self.rate_limit_until = 0.0
        self._counts = {"sent": 0, "suppressed": 0, "failed": 0}

    @property
    def enabled(self) -> bool:
        return self.notifier is not None

    def add_event(self, kind: Union[EventKind, str], payload: Dict[str, Any]):
        kind = EventKind(kind)
        with self._lock:
            if kind == EventKind.NEW_FILE:
                self._batch.new_files.append(payload)
            elif kind == EventKind.FILE_CHANGED:
                self._batch.changed_files.append(payload)
            elif kind == EventKind.ERROR:
                self._batch.errors.append(payload)
            elif kind == EventKind.ENDPOINTS_FOUND:
                self._batch.endpoint_summaries.append(payload)

    def pending(self) -> NotificationBatch:
        with self._lock:
            return NotificationBatch(
                new_files=list(self._batch.new_files),
                changed_files=list(self._batch.changed_files),
                errors=list(self._batch.errors),
                endpoint_summaries=list(self._batch.endpoint_summaries)
            )

    def _take_batch(self) -> NotificationBatch:
        with self._lock:
            batch, self._batch = self._batch, NotificationBatch()
        return batch

    def is_rate_limited(self) -> bool:
        return self.clock() < self.rate_limit_until

    def _enqueue(self, payload: Dict[str, Any], signature: str):
        now = self.clock()
        self._queue.append(QueuedSummary(payload, signature, now))
        self._prune_queue(now)

    def _prune_queue(self, now: float):
        self._queue = [q for q in self._queue if now - q.queued_at <= self.QUEUE_TTL]
        if len(self._queue) > self.MAX_QUEUE:
            dropped = len(self._queue) - self.MAX_QUEUE
            self._queue = self._queue[dropped:]
            logger.warning(f"Notification queue full, dropped {dropped} oldest summaries")

    async def _deliver(self, payload: Dict[str, Any], signature: str) -> bool:
        """Send one summary; on failure it is requeued and False returned."""
        try:
            result = await self.notifier.send(payload)
        except DeliveryError as e:
            self._counts["failed"] += 1
            logger.error(f"Notification delivery failed: {e}")
            self._enqueue(payload, signature)
            return False

        if result.ok:
            self._counts["sent"] += 1
            self._last_signature = signature
            self._last_sent_at = self.clock()
            return True

        if result.status == 429:
            retry_after = result.retry_after if result.retry_after is not None else self.DEFAULT_RETRY_AFTER
            self.rate_limit_until = self.clock() + retry_after
            logger.warning(f"Notifications rate limited for {retry_after:.0f}s, summary queued")
        else:
            self._counts["failed"] += 1
            logger.error(f"Notification delivery failed with status {result.status}")
        self._enqueue(payload, signature)
        return False

    async def _drain_queue(self) -> bool:
        self._prune_queue(self.clock())
        if not self._queue or self.is_rate_limited():
            return not self._queue

        queued, self._queue = self._queue, []
        if not self.silent_mode:
            logger.info(f"Sending {len(queued)} queued notification summaries")
        for index, entry in enumerate(queued):
            if not await self._deliver(entry.payload, entry.signature):
                # the failed entry was requeued; keep the rest behind it
                self._queue.extend(queued[index + 1:])
                return False
        return True

    def _is_duplicate(self, signature: str) -> bool:
        if signature != self._last_signature or self._last_sent_at is None:
            return False
        return self.clock() - self._last_sent_at < self.min_interval

    async def flush(self) -> bool:
        batch = self._take_batch()
        if batch.is_empty():
            return False
        if not self.enabled:
            logger.debug("No notifier configured, dropping batch")
            return False

        signature = batch.signature()
        if self._is_duplicate(signature):
            self._counts["suppressed"] += 1
            if not self.silent_mode:
                logger.info("Identical summary sent recently, suppressed")
            return False

        payload = build_summary(batch, self.group_by_domain)

        if self.is_rate_limited():
            self._enqueue(payload, signature)
            if not self.silent_mode:
                logger.info("Notifications rate limited, summary queued")
            return False

        if not await self._drain_queue():
            self._enqueue(payload, signature)
            return False

        sent = await self._deliver(payload, signature)
        if sent and not self.silent_mode:
            logger.info(
                f"Summary sent: {len(batch.new_files) + len(batch.changed_files)} changes, "
                f"{len(batch.endpoint_summaries)} endpoint files, {len(batch.errors)} errors"
            )
        return sent

    def stats(self) -> Dict[str, Any]:
        return {
            "queued": len(self._queue),
            "suppressed": self._counts["suppressed"],
            "sent": self._counts["sent"],
            "failed": self._counts["failed"],
            "rate_limited_until": self.rate_limit_until if self.is_rate_limited() else None
        }
