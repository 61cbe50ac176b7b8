import json
import logging

import pytest

from jsmonitor.core.config import Config
from jsmonitor.core.errors import RecoverablePayloadError
from jsmonitor.core.logger import logger, set_silent
from jsmonitor.models import FilePayload
from jsmonitor.pipelines.monitor import MonitorRunner

DOMAIN = "example.com"
APP = b"const API = '/api/v1';\nfunction load() { return fetch(API + '/users'); }\n"


def _runner(tmp_path, notifier=None, **overrides):
    config = Config(data_dir=str(tmp_path / "data"), **overrides)
    return MonitorRunner(config, notifier=notifier, silent_mode=True)


@pytest.mark.parametrize("url,content_type,expected", [
    ("https://example.com/app.js", None, True),
    ("https://example.com/app.mjs?v=3#x", None, True),
    ("https://example.com/component.tsx", None, True),
    ("https://example.com/api/bundle", "application/javascript; charset=utf-8", True),
    ("https://example.com/style.css", "text/css", False),
    ("https://example.com/app.js.map", None, False),
])
def test_is_javascript(tmp_path, url, content_type, expected):
    assert _runner(tmp_path).is_javascript(url, content_type) is expected


def test_domain_and_url_filters(tmp_path):
    runner = _runner(tmp_path, include_domains=["*.example.com"], exclude_urls=["*/vendor/*"])
    assert runner.should_process("cdn.example.com", "https://cdn.example.com/app.js")
    assert not runner.should_process("example.org", "https://example.org/app.js")
    assert not runner.should_process("cdn.example.com", "https://cdn.example.com/vendor/lib.js")


def test_decode_payload_rejects_bad_bytes(tmp_path):
    runner = _runner(tmp_path, max_file_size=64)
    with pytest.raises(RecoverablePayloadError):
        runner.decode_payload(b"")
    with pytest.raises(RecoverablePayloadError):
        runner.decode_payload(b"\x00\x01binary")
    with pytest.raises(RecoverablePayloadError):
        runner.decode_payload(b"a" * 65)
    assert runner.decode_payload("café".encode("utf-8")) == "café"


@pytest.mark.asyncio
async def test_cycle_counts_and_notification(tmp_path, notifier):
    runner = _runner(tmp_path, notifier=notifier)

    runner.submit(DOMAIN, "https://example.com/app.js", APP)
    runner.submit(DOMAIN, "https://example.com/logo.png", b"\x89PNG")
    runner.submit(DOMAIN, "https://example.com/broken.js", b"\x00\x00\x00")
    report = await runner.finish_cycle()

    assert report.stats.new == 1
    assert report.stats.filtered == 1
    assert report.stats.errors == 1
    assert report.stats.new_endpoints >= 1
    assert [e.url for e in report.errors] == ["https://example.com/broken.js"]
    assert report.errors[0].type == "RecoverablePayloadError"
    assert report.notification_sent
    assert DOMAIN in report.clusters

    data_dir = tmp_path / "data"
    assert list((data_dir / "cycles").glob("*.json"))
    assert (data_dir / DOMAIN / "reports" / "endpoint-report.md").exists()
    assert (data_dir / DOMAIN / "reports" / "similarity-report.md").exists()
    endpoints = json.loads((data_dir / DOMAIN / "endpoints" / "all-endpoints.json").read_text())
    assert "/api/v1/users" in [e["url"] for e in endpoints]


@pytest.mark.asyncio
async def test_second_cycle_sees_unchanged_and_changed(tmp_path, notifier):
    runner = _runner(tmp_path, notifier=notifier)
    await runner.process(FilePayload(DOMAIN, "https://example.com/app.js", APP))
    await runner.finish_cycle()

    unchanged = await runner.process(FilePayload(DOMAIN, "https://example.com/app.js", APP))
    changed = await runner.process(FilePayload(DOMAIN, "https://example.com/app.js", APP + b"fetch('/api/v1/orders');\n"))
    report = await runner.finish_cycle()

    assert unchanged.status == "unchanged"
    assert changed.status == "changed"
    assert (report.stats.unchanged, report.stats.changed, report.stats.new) == (1, 1, 0)
    assert changed.change.diff_stats.added_lines == 1


@pytest.mark.asyncio
async def test_renamed_file_is_detected(tmp_path):
    runner = _runner(tmp_path)
    await runner.process(FilePayload(DOMAIN, "https://example.com/app.1111.js", APP))
    outcome = await runner.process(FilePayload(DOMAIN, "https://example.com/app.2222.js", APP))
    assert [r.url for r in outcome.renames] == ["https://example.com/app.1111.js"]


@pytest.mark.asyncio
async def test_cancel_holds_until_the_cycle_finishes(tmp_path):
    runner = _runner(tmp_path)
    runner.cancel()
    assert runner.submit(DOMAIN, "https://example.com/app.js", APP) is None
    report = await runner.finish_cycle()
    assert report.stats.new == 0

    assert runner.submit(DOMAIN, "https://example.com/app.js", APP) is not None
    report = await runner.finish_cycle()
    assert report.stats.new == 1


def test_verbose_config_enables_debug_logging(tmp_path):
    try:
        MonitorRunner(Config(data_dir=str(tmp_path / "data"), verbose=True))
        assert logger.level == logging.DEBUG
    finally:
        set_silent(False)
