"""
Keyed persistence for the analysis engine.
ContentStore is the abstract per-domain document store; DataStore keeps it as JSON files on disk.
"""

import json
import os
import re
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from jsmonitor.analyzers.endpoint_extractor import merge_endpoints
from jsmonitor.core.errors import StoreReadError
from jsmonitor.core.logger import logger
from jsmonitor.core.utils import safe_file_name, safe_domain, timestamp_slug
from jsmonitor.models import (
    ContentRecord, Endpoint, EndpointSummary, EndpointSaveResult, Fingerprint, ConfidenceLevel
)


class ContentStore(ABC):

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def domain_lock(self, domain: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(domain)
            if lock is None:
                lock = threading.RLock()
                self._locks[domain] = lock
            return lock

    @abstractmethod
    def read_hashes(self, domain: str) -> Dict[str, str]:
        ...

    @abstractmethod
    def write_hash(self, domain: str, url: str, content_hash: str):
        ...

    @abstractmethod
    def read_content(self, domain: str, url: str) -> Optional[str]:
        ...

    @abstractmethod
    def read_formatted(self, domain: str, url: str) -> Optional[str]:
        ...

    @abstractmethod
    def write_content(self, domain: str, url: str, raw: str, formatted: str):
        ...

    @abstractmethod
    def read_fingerprints(self, domain: str) -> Dict[str, Fingerprint]:
        ...

    @abstractmethod
    def write_fingerprints(self, domain: str, fingerprints: Dict[str, Fingerprint]):
        ...

    @abstractmethod
    def write_document(self, domain: str, name: str, data: Any) -> str:
        ...

    def save_diff(self, domain: str, url: str, diff: Dict[str, Any], max_files: int) -> Optional[str]:
        return None

    def save_new_code(self, domain: str, url: str, document: Dict[str, Any], max_files: int) -> Optional[str]:
        return None

    def read_record(self, domain: str, url: str) -> Optional[ContentRecord]:
        content_hash = self.read_hashes(domain).get(url)
        return ContentRecord(url=url, content_hash=content_hash) if content_hash else None

    def list_contents(self, domain: str) -> Dict[str, str]:
        contents = {}
        for url in sorted(self.read_hashes(domain)):
            raw = self.read_content(domain, url)
            if raw is not None:
                contents[url] = raw
        return contents


def summarize_records(records: List[Dict[str, Any]]) -> EndpointSummary:
    summary = EndpointSummary(total=len(records))
    for record in records:
        confidence = record.get("confidence")
        if confidence == ConfidenceLevel.HIGH.value:
            summary.high += 1
        elif confidence == ConfidenceLevel.MEDIUM.value:
            summary.medium += 1
        else:
            summary.low += 1
        method = record.get("method", "UNKNOWN")
        category = record.get("category", "unknown")
        summary.by_method[method] = summary.by_method.get(method, 0) + 1
        summary.by_category[category] = summary.by_category.get(category, 0) + 1
    return summary


class DataStore(ContentStore):

    HASHES_FILE = "hashes.json"
    FINGERPRINTS_FILE = "fingerprints.json"
    ALL_ENDPOINTS_FILE = "all-endpoints.json"
    SUMMARY_FILE = "summary.json"
    ENDPOINTS_TEXT_FILE = "endpoints.txt"
    RESERVED_ENDPOINT_FILES = (ALL_ENDPOINTS_FILE, SUMMARY_FILE)
    PER_FILE_ENDPOINT_LIMIT = 50

    STATIC_ASSET_PATTERN = re.compile(
        r'\.(?:png|jpe?g|gif|svg|ico|webp|css|woff2?|ttf|eot|otf|mp4|mp3|map)(?:\?.*)?$',
        re.IGNORECASE
    )

    def __init__(self, data_dir: str = "data"):
        super().__init__()
        self.base_dir = Path(data_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_domain_dir(self, domain: str, *parts: str) -> Path:
        target_dir = self.base_dir / safe_domain(domain)
        for part in parts:
            target_dir = target_dir / part
        target_dir.mkdir(parents=True, exist_ok=True)
        return target_dir

    def _atomic_write(self, path: Path, text: str):
        fd, temp_path = tempfile.mkstemp(
            suffix='.tmp',
            prefix=f'.{path.name}_',
            dir=str(path.parent)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
            shutil.move(temp_path, str(path))
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _write_json(self, path: Path, data: Any):
        self._atomic_write(path, json.dumps(data, indent=2, default=str))

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
            raise StoreReadError(str(path), str(e)[:100])
        if not isinstance(data, type(default)):
            raise StoreReadError(str(path), f"expected {type(default).__name__}, got {type(data).__name__}")
        return data

    def read_hashes(self, domain: str) -> Dict[str, str]:
        return self._read_json(self._get_domain_dir(domain) / self.HASHES_FILE, {})

    def write_hash(self, domain: str, url: str, content_hash: str):
        path = self._get_domain_dir(domain) / self.HASHES_FILE
        with self.domain_lock(domain):
            try:
                hashes = self.read_hashes(domain)
            except StoreReadError as e:
                logger.warning(f"Replacing unreadable hash store: {e}")
                hashes = {}
            hashes[url] = content_hash
            self._write_json(path, hashes)

    def _content_path(self, domain: str, kind: str, url: str) -> Path:
        return self._get_domain_dir(domain, kind) / f"{safe_file_name(url)}.js"

    def read_content(self, domain: str, url: str) -> Optional[str]:
        return self._read_text(self._content_path(domain, "original", url))

    def read_formatted(self, domain: str, url: str) -> Optional[str]:
        return self._read_text(self._content_path(domain, "beautified", url))

    def _read_text(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except (UnicodeDecodeError, IOError) as e:
            logger.warning(f"Cannot read stored content {path}: {str(e)[:80]}")
            return None

    def write_content(self, domain: str, url: str, raw: str, formatted: str):
        self._atomic_write(self._content_path(domain, "original", url), raw)
        self._atomic_write(self._content_path(domain, "beautified", url), formatted)

    def save_diff(self, domain: str, url: str, diff: Dict[str, Any], max_files: int) -> str:
        diff_dir = self._get_domain_dir(domain, "diffs")
        path = diff_dir / f"{safe_file_name(url)}_{timestamp_slug()}.json"
        self._write_json(path, diff)
        self._trim_directory(diff_dir, max_files)
        return str(path)

    def save_new_code(self, domain: str, url: str, document: Dict[str, Any], max_files: int) -> str:
        code_dir = self._get_domain_dir(domain, "new-code")
        path = code_dir / f"{safe_file_name(url)}_{timestamp_slug()}.json"
        self._write_json(path, document)
        self._trim_directory(code_dir, max_files)
        return str(path)

    def read_fingerprints(self, domain: str) -> Dict[str, Fingerprint]:
        data = self._read_json(self._get_domain_dir(domain) / self.FINGERPRINTS_FILE, {})
        return {url: Fingerprint.from_dict(fp) for url, fp in data.items()}

    def write_fingerprints(self, domain: str, fingerprints: Dict[str, Fingerprint]):
        path = self._get_domain_dir(domain) / self.FINGERPRINTS_FILE
        self._write_json(path, {url: fp.to_dict() for url, fp in sorted(fingerprints.items())})

    def write_document(self, domain: str, name: str, data: Any) -> str:
        path = self._get_domain_dir(domain) / name
        self._write_json(path, data)
        return str(path)

    def write_report(self, domain: str, name: str, text: str) -> str:
        path = self._get_domain_dir(domain, "reports") / name
        self._atomic_write(path, text)
        return str(path)

    def write_cycle_report(self, cycle_id: str, data: Dict[str, Any]) -> str:
        cycles_dir = self.base_dir / "cycles"
        cycles_dir.mkdir(parents=True, exist_ok=True)
        path = cycles_dir / f"{cycle_id}.json"
        self._write_json(path, data)
        return str(path)

    def _trim_directory(self, directory: Path, keep: int, exclude: tuple = ()) -> int:
        files = [
            p for p in directory.iterdir()
            if p.is_file() and p.suffix == '.json' and p.name not in exclude
        ]
        if len(files) <= keep:
            return 0
        files.sort(key=lambda p: (p.stat().st_mtime, p.name))
        removed = 0
        for path in files[:len(files) - keep]:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Cannot remove old file {path.name}: {e}")
        return removed

    def read_endpoints(self, domain: str) -> List[Dict[str, Any]]:
        path = self._get_domain_dir(domain, "endpoints") / self.ALL_ENDPOINTS_FILE
        return self._read_json(path, [])

    def save_endpoints(
        self,
        domain: str,
        file_url: str,
        endpoints: List[Endpoint],
        max_endpoints: int = 1000,
        max_files: int = 100
    ) -> EndpointSaveResult:
        if not endpoints:
            return EndpointSaveResult()

        endpoints_dir = self._get_domain_dir(domain, "endpoints")
        now = datetime.now().isoformat()
        records = [ep.to_record(now) for ep in endpoints]

        with self.domain_lock(domain):
            try:
                all_records = self.read_endpoints(domain)
            except StoreReadError as e:
                logger.warning(f"Endpoint list unreadable, starting fresh: {e}")
                all_records = []

            index = {r.get("url"): position for position, r in enumerate(all_records)}
            fresh = []
            for record in records:
                position = index.get(record["url"])
                if position is None:
                    index[record["url"]] = len(all_records)
                    all_records.append(record)
                    fresh.append(record)
                    continue
                current = all_records[position]
                if self._is_stronger(record, current):
                    # first-seen timestamp drives retention order
                    all_records[position] = dict(record, timestamp=current.get("timestamp", now))
                    logger.debug(f"Upgraded {record['url']} to {record['confidence']} ({record['category']})")

            overflow = len(all_records) - max_endpoints
            if overflow > 0:
                all_records.sort(key=lambda r: r.get("timestamp", ""))
                del all_records[:overflow]
                logger.debug(f"Trimmed {overflow} oldest endpoints for {domain}")

            file_summary = summarize_records(records)
            file_document = {
                "file_url": file_url,
                "domain": domain,
                "timestamp": now,
                "endpoints": records[:self.PER_FILE_ENDPOINT_LIMIT],
                "summary": file_summary.to_dict()
            }
            self._write_json(
                endpoints_dir / f"{safe_file_name(file_url)}_{timestamp_slug()}.json",
                file_document
            )
            self._trim_directory(endpoints_dir, max_files, exclude=self.RESERVED_ENDPOINT_FILES)

            self._write_json(endpoints_dir / self.ALL_ENDPOINTS_FILE, all_records)
            self._write_endpoints_text(endpoints_dir, all_records)

            domain_summary = summarize_records(all_records)
            self._write_json(endpoints_dir / self.SUMMARY_FILE, {
                "domain": domain,
                "last_updated": now,
                "total_endpoints": len(all_records),
                "endpoints": domain_summary.to_dict()
            })

        return EndpointSaveResult(count=len(records), new_count=len(fresh), summary=file_summary)

    @staticmethod
    def _is_stronger(candidate: Dict[str, Any], current: Dict[str, Any]) -> bool:
        challenger, incumbent = Endpoint.from_dict(candidate), Endpoint.from_dict(current)
        return (merge_endpoints(challenger, incumbent) is challenger
                and merge_endpoints(incumbent, challenger) is challenger)

    def is_clean_endpoint(self, url: str) -> bool:
        if not url or len(url) < 2 or re.search(r'\s', url):
            return False
        if url.replace("${...}", "").strip("/") == "":
            return False
        return not self.STATIC_ASSET_PATTERN.search(url)

    def _write_endpoints_text(self, endpoints_dir: Path, records: List[Dict[str, Any]]):
        ordered = sorted(records, key=lambda r: r.get("timestamp", ""))
        lines = [r["url"] for r in ordered if self.is_clean_endpoint(r.get("url", ""))]
        self._atomic_write(endpoints_dir / self.ENDPOINTS_TEXT_FILE, "\n".join(lines) + ("\n" if lines else ""))
