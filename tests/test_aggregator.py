import threading

import pytest

from jsmonitor.core.errors import DeliveryError
from jsmonitor.models import EventKind, NotificationBatch
from jsmonitor.services.aggregator import NotificationAggregator, build_summary
from jsmonitor.services.notifier import DeliveryResult

from conftest import FakeNotifier

NEW_FILE = {"domain": "example.com", "url": "https://example.com/app.js", "lines": 120, "file_size": "4.2 KB"}


def _aggregator(notifier, clock, **kwargs):
    return NotificationAggregator(notifier, min_interval=300, clock=clock, silent_mode=True, **kwargs)


@pytest.mark.asyncio
async def test_empty_flush_is_a_noop(notifier, clock):
    aggregator = _aggregator(notifier, clock)
    assert await aggregator.flush() is False
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_flush_sends_and_clears(notifier, clock):
    aggregator = _aggregator(notifier, clock)
    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)
    aggregator.add_event("error", {"domain": "example.com", "url": "https://example.com/x.js",
                                   "type": "RecoverablePayloadError", "message": "Binary payload"})

    assert await aggregator.flush() is True
    assert notifier.calls == 1
    assert aggregator.pending().is_empty()
    embed = notifier.sent[0]["embeds"][0]
    names = [field["name"] for field in embed["fields"]]
    assert "New Files (1)" in names
    assert "Errors (1)" in names


@pytest.mark.asyncio
async def test_identical_batch_is_suppressed_within_interval(notifier, clock):
    aggregator = _aggregator(notifier, clock)
    aggregator.add_event(EventKind.NEW_FILE, dict(NEW_FILE, timestamp="t1"))
    assert await aggregator.flush() is True

    clock.advance(60)
    aggregator.add_event(EventKind.NEW_FILE, dict(NEW_FILE, timestamp="t2"))
    assert await aggregator.flush() is False
    assert notifier.calls == 1
    assert aggregator.stats()["suppressed"] == 1

    clock.advance(300)
    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)
    assert await aggregator.flush() is True
    assert notifier.calls == 2


@pytest.mark.asyncio
async def test_rate_limit_requeues_and_drains_later(clock):
    notifier = FakeNotifier([DeliveryResult(ok=False, status=429, retry_after=30)])
    aggregator = _aggregator(notifier, clock)

    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)
    assert await aggregator.flush() is False
    stats = aggregator.stats()
    assert stats["queued"] == 1
    assert stats["rate_limited_until"] == clock.now + 30

    aggregator.add_event(EventKind.FILE_CHANGED, {"domain": "example.com", "url": "https://example.com/b.js",
                                                  "added_lines": 3, "removed_lines": 1})
    assert await aggregator.flush() is False
    assert notifier.calls == 1
    assert aggregator.stats()["queued"] == 2

    clock.advance(31)
    aggregator.add_event(EventKind.NEW_FILE, dict(NEW_FILE, url="https://example.com/c.js"))
    assert await aggregator.flush() is True
    assert len(notifier.sent) == 3
    assert aggregator.stats()["queued"] == 0


@pytest.mark.asyncio
async def test_delivery_error_never_propagates(clock):
    notifier = FakeNotifier([DeliveryError("connection refused")])
    aggregator = _aggregator(notifier, clock)
    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)

    assert await aggregator.flush() is False
    stats = aggregator.stats()
    assert stats["failed"] == 1
    assert stats["queued"] == 1


@pytest.mark.asyncio
async def test_stale_queue_entries_are_dropped(clock):
    notifier = FakeNotifier([DeliveryError("down")])
    aggregator = _aggregator(notifier, clock)
    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)
    await aggregator.flush()

    clock.advance(3601)
    aggregator.add_event(EventKind.NEW_FILE, dict(NEW_FILE, url="https://example.com/d.js"))
    assert await aggregator.flush() is True
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_without_notifier_batch_is_dropped(clock):
    aggregator = _aggregator(None, clock)
    aggregator.add_event(EventKind.NEW_FILE, NEW_FILE)
    assert await aggregator.flush() is False
    assert aggregator.pending().is_empty()


def test_unknown_event_kind_is_rejected(notifier, clock):
    with pytest.raises(ValueError):
        _aggregator(notifier, clock).add_event("scan_complete", {})


def test_summary_layout():
    batch = NotificationBatch(
        new_files=[dict(NEW_FILE, url=f"https://example.com/f{i}.js") for i in range(7)],
        endpoint_summaries=[{"domain": "example.com", "url": "https://example.com/f0.js", "new_endpoints": 4,
                             "high_confidence": 2, "medium_confidence": 1, "low_confidence": 1}],
    )
    embed = build_summary(batch)["embeds"][0]
    assert embed["title"] == "Scan Summary - 7 Changes, 4 Endpoints Detected"
    new_files = next(f for f in embed["fields"] if f["name"] == "New Files (7)")
    assert "+ 2 more files..." in new_files["value"]
    endpoints = next(f for f in embed["fields"] if f["name"].startswith("API Endpoints"))
    assert "H:2 M:1 L:1" in endpoints["value"]


def test_summary_grouped_by_domain():
    batch = NotificationBatch(new_files=[NEW_FILE, dict(NEW_FILE, domain="other.com")])
    embed = build_summary(batch, group_by_domain=True)["embeds"][0]
    names = [f["name"] for f in embed["fields"]]
    assert "example.com" in names and "other.com" in names


def test_concurrent_add_event_keeps_every_event(notifier, clock):
    aggregator = _aggregator(notifier, clock)

    def worker(index):
        for n in range(50):
            url = f"https://example.com/{index}/{n}.js"
            aggregator.add_event(EventKind.NEW_FILE, dict(NEW_FILE, url=url))
            aggregator.add_event("endpoints_found", {"domain": "example.com", "url": url, "new_endpoints": 1})

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    batch = aggregator.pending()
    assert len(batch.new_files) == 400
    assert len(batch.endpoint_summaries) == 400
    assert len({f["url"] for f in batch.new_files}) == 400
