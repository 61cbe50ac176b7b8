"""
Data models for the analysis engine.
Defines the records exchanged between detection, extraction, clustering and notification.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from enum import Enum
import hashlib
import json
from datetime import datetime


class ConfidenceLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 1, "MEDIUM": 2, "HIGH": 3}[self.value]


class EventKind(Enum):
    NEW_FILE = "new_file"
    FILE_CHANGED = "file_changed"
    ERROR = "error"
    ENDPOINTS_FOUND = "endpoints_found"


@dataclass
class FilePayload:
    domain: str
    url: str
    data: bytes
    content_type: Optional[str] = None
    observed_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class ContentRecord:
    url: str
    content_hash: str

    def to_dict(self) -> dict:
        return {"url": self.url, "content_hash": self.content_hash}


@dataclass
class DiffStats:
    added_lines: int = 0
    removed_lines: int = 0
    total_lines: int = 0
    file_size: int = 0

    def to_dict(self) -> dict:
        return {
            "added_lines": self.added_lines,
            "removed_lines": self.removed_lines,
            "total_lines": self.total_lines,
            "file_size": self.file_size
        }


@dataclass
class CodeSection:
    start_line: int
    lines: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    context: List[str] = field(default_factory=list)
    truncated: bool = False

    def is_empty(self) -> bool:
        return not self.lines and not self.removed

    def to_dict(self) -> dict:
        return {
            "start_line": self.start_line,
            "lines": self.lines,
            "removed": self.removed,
            "context": self.context,
            "truncated": self.truncated
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CodeSection":
        return cls(**data)


@dataclass
class ChangeResult:
    domain: str
    url: str
    is_new: bool
    changed: bool
    content_hash: str
    diff_stats: Optional[DiffStats] = None
    raw_sections: List[CodeSection] = field(default_factory=list)
    formatted_sections: List[CodeSection] = field(default_factory=list)
    preview: List[str] = field(default_factory=list)
    preview_truncated: bool = False
    total_lines: int = 0

    @property
    def section_count(self) -> int:
        return len(self.raw_sections) + len(self.formatted_sections)

    @property
    def status(self) -> str:
        if self.is_new:
            return "new"
        return "changed" if self.changed else "unchanged"

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "url": self.url,
            "status": self.status,
            "is_new": self.is_new,
            "changed": self.changed,
            "content_hash": self.content_hash,
            "diff_stats": self.diff_stats.to_dict() if self.diff_stats else None,
            "new_code_sections": {
                "raw": [s.to_dict() for s in self.raw_sections],
                "formatted": [s.to_dict() for s in self.formatted_sections]
            },
            "section_count": self.section_count,
            "preview": self.preview,
            "preview_truncated": self.preview_truncated,
            "total_lines": self.total_lines
        }


@dataclass
class Endpoint:
    url: str
    method: str = "UNKNOWN"
    category: str = "line_analysis"
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    source_file: str = ""
    line: int = 0
    context: str = ""

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "method": self.method,
            "category": self.category,
            "confidence": self.confidence.value,
            "source_file": self.source_file,
            "line": self.line,
            "context": self.context
        }

    def to_record(self, timestamp: Optional[str] = None) -> dict:
        record = self.to_dict()
        record.pop("context")
        record["source_file"] = self.source_file.split("?")[0].rstrip("/").split("/")[-1]
        record["timestamp"] = timestamp or datetime.now().isoformat()
        record["hash"] = hashlib.sha256(self.url.encode("utf-8")).hexdigest()[:16]
        return record

    @classmethod
    def from_dict(cls, data: dict) -> "Endpoint":
        return cls(
            url=data["url"],
            method=data.get("method", "UNKNOWN"),
            category=data.get("category", "line_analysis"),
            confidence=ConfidenceLevel(data.get("confidence", "LOW")),
            source_file=data.get("source_file", ""),
            line=data.get("line", 0),
            context=data.get("context", "")
        )


@dataclass
class EndpointSummary:
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    by_method: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "high_confidence": self.high,
            "medium_confidence": self.medium,
            "low_confidence": self.low,
            "by_method": self.by_method,
            "by_category": self.by_category
        }


@dataclass
class EndpointSaveResult:
    count: int = 0
    new_count: int = 0
    summary: EndpointSummary = field(default_factory=EndpointSummary)


@dataclass
class Fingerprint:
    url: str
    function_signatures: List[str] = field(default_factory=list)
    import_export_statements: List[str] = field(default_factory=list)
    normalized_content_hash: str = ""
    code_length: int = 0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def signature_count(self) -> int:
        return len(self.function_signatures)

    @property
    def import_export_count(self) -> int:
        return len(self.import_export_statements)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "function_signatures": self.function_signatures,
            "import_export_statements": self.import_export_statements,
            "normalized_content_hash": self.normalized_content_hash,
            "code_length": self.code_length,
            "signature_count": self.signature_count,
            "import_export_count": self.import_export_count,
            "created_at": self.created_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Fingerprint":
        return cls(
            url=data["url"],
            function_signatures=sorted(set(data.get("function_signatures", []))),
            import_export_statements=sorted(set(data.get("import_export_statements", []))),
            normalized_content_hash=data.get("normalized_content_hash", ""),
            code_length=data.get("code_length", 0),
            created_at=data.get("created_at", datetime.now().isoformat())
        )


@dataclass
class SimilarityScore:
    overall: float = 0.0
    signatures: float = 0.0
    import_exports: float = 0.0
    content_match: bool = False

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "signatures": self.signatures,
            "import_exports": self.import_exports,
            "content_match": self.content_match
        }


@dataclass
class Cluster:
    seed_url: str
    member_urls: List[str] = field(default_factory=list)
    reason: str = "renamed_or_moved_files"
    average_similarity: float = 0.0

    def to_dict(self) -> dict:
        return {
            "seed_url": self.seed_url,
            "member_urls": self.member_urls,
            "reason": self.reason,
            "average_similarity": self.average_similarity
        }


@dataclass
class ClusterReport:
    domain: str
    clusters: List[Cluster] = field(default_factory=list)
    singletons: List[str] = field(default_factory=list)
    total_files: int = 0
    generated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "generated_at": self.generated_at,
            "total_files": self.total_files,
            "clusters": [c.to_dict() for c in self.clusters],
            "singletons": self.singletons
        }


@dataclass
class RenameCandidate:
    url: str
    similarity: SimilarityScore

    def to_dict(self) -> dict:
        return {"url": self.url, "similarity": self.similarity.to_dict()}


@dataclass
class ErrorRecord:
    url: str
    type: str
    message: str

    def __post_init__(self):
        self.message = self.message[:200]

    def to_dict(self) -> dict:
        return {"url": self.url, "type": self.type, "message": self.message}


@dataclass
class NotificationBatch:
    new_files: List[Dict[str, Any]] = field(default_factory=list)
    changed_files: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    endpoint_summaries: List[Dict[str, Any]] = field(default_factory=list)

    VOLATILE_KEYS = ("timestamp", "observed_at", "detected_at")

    def is_empty(self) -> bool:
        return not (self.new_files or self.changed_files or self.errors or self.endpoint_summaries)

    def signature(self) -> str:
        def semantic(items: List[Dict[str, Any]]) -> List[str]:
            cleaned = []
            for item in items:
                kept = {k: v for k, v in item.items() if k not in self.VOLATILE_KEYS}
                cleaned.append(json.dumps(kept, sort_keys=True, default=str))
            return sorted(cleaned)

        content = {
            "new_files": semantic(self.new_files),
            "changed_files": semantic(self.changed_files),
            "errors": semantic(self.errors),
            "endpoint_summaries": semantic(self.endpoint_summaries)
        }
        canonical = json.dumps(content, sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CycleStats:
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    filtered: int = 0
    errors: int = 0
    degraded: int = 0
    new_code_sections: int = 0
    endpoints: int = 0
    new_endpoints: int = 0

    def to_dict(self) -> dict:
        return {
            "new": self.new,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "filtered": self.filtered,
            "errors": self.errors,
            "degraded": self.degraded,
            "new_code_sections": self.new_code_sections,
            "endpoints": self.endpoints,
            "new_endpoints": self.new_endpoints
        }


@dataclass
class FileOutcome:
    domain: str
    url: str
    status: str
    change: Optional[ChangeResult] = None
    endpoints: List[Endpoint] = field(default_factory=list)
    new_endpoints: int = 0
    degraded: bool = False
    renames: List[RenameCandidate] = field(default_factory=list)
    error: Optional[ErrorRecord] = None

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "url": self.url,
            "status": self.status,
            "change": self.change.to_dict() if self.change else None,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "new_endpoints": self.new_endpoints,
            "degraded": self.degraded,
            "renames": [r.to_dict() for r in self.renames],
            "error": self.error.to_dict() if self.error else None
        }


@dataclass
class CycleReport:
    cycle_id: str
    started_at: str
    completed_at: Optional[str] = None
    stats: CycleStats = field(default_factory=CycleStats)
    clusters: Dict[str, ClusterReport] = field(default_factory=dict)
    errors: List[ErrorRecord] = field(default_factory=list)
    notification_sent: bool = False

    def to_dict(self) -> dict:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "stats": self.stats.to_dict(),
            "clusters": {d: r.to_dict() for d, r in self.clusters.items()},
            "errors": [e.to_dict() for e in self.errors],
            "notification_sent": self.notification_sent
        }
