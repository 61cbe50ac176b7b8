"""
Markdown and JSON reports.
Endpoint and similarity reports are written per domain; cycle reports go to the data root.
"""

from datetime import datetime
from typing import Dict, List, Any, Optional

from jsmonitor.core.errors import StoreReadError
from jsmonitor.core.logger import logger
from jsmonitor.models import ClusterReport, CycleReport
from jsmonitor.services.datastore import DataStore


ENDPOINT_REPORT = "endpoint-report.md"
SIMILARITY_REPORT = "similarity-report.md"


def _group(records: List[Dict[str, Any]], key: str) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        groups.setdefault(record.get(key) or "UNKNOWN", []).append(record)
    return groups


def render_endpoint_report(domain: str, records: List[Dict[str, Any]]) -> str:
    by_confidence = _group(records, "confidence")
    by_method = _group(records, "method")
    by_category = _group(records, "category")

    def listing(items: List[Dict[str, Any]]) -> List[str]:
        return [
            f"- `{r.get('method', 'UNKNOWN')}` **{r['url']}** (from `{r.get('source_file', '')}`)"
            for r in items
        ]

    lines = [
        f"# Endpoint Report for {domain}",
        f"Generated: {datetime.now().isoformat()}",
        f"Total Endpoints: {len(records)}",
        "",
        "## Summary",
        "",
        "### By Confidence Level",
        f"- **High Confidence**: {len(by_confidence.get('HIGH', []))} endpoints",
        f"- **Medium Confidence**: {len(by_confidence.get('MEDIUM', []))} endpoints",
        f"- **Low Confidence**: {len(by_confidence.get('LOW', []))} endpoints",
        "",
        "### By HTTP Method",
    ]
    lines.extend(f"- **{method}**: {len(items)} endpoints" for method, items in sorted(by_method.items()))
    lines.extend([
        "",
        "## High Confidence Endpoints",
        "These endpoints are very likely to be real API endpoints:",
        "",
    ])
    lines.extend(listing(by_confidence.get("HIGH", [])))
    lines.extend([
        "",
        "## Medium Confidence Endpoints",
        "These endpoints are likely to be real but may need verification:",
        "",
    ])
    lines.extend(listing(by_confidence.get("MEDIUM", [])))
    lines.extend(["", "## All Endpoints by Category", ""])
    for category, items in sorted(by_category.items()):
        lines.append(f"### {category.replace('_', ' ').upper()}")
        lines.extend(f"- `{r.get('method', 'UNKNOWN')}` **{r['url']}** ({r.get('confidence')})" for r in items)
        lines.append("")
    return "\n".join(lines)


def render_similarity_report(report: ClusterReport) -> str:
    lines = [
        f"# Code Similarity Analysis for {report.domain}",
        f"Generated: {report.generated_at}",
        "",
        "## Summary",
        f"- Total Files: {report.total_files}",
        f"- File Clusters: {len(report.clusters)}",
        f"- Unique Files: {len(report.singletons)}",
        "",
        "## File Clusters (Likely Renamed/Moved Files)",
        "These groups contain files that are very similar and likely represent the same functionality:",
        "",
    ]
    for index, cluster in enumerate(report.clusters, 1):
        lines.append(f"### Cluster {index}")
        lines.append(f"**Likely Reason:** {cluster.reason}")
        lines.append(f"**Average Similarity:** {cluster.average_similarity:.2f}")
        lines.append("**Files:**")
        lines.extend(f"- `{url}`" for url in cluster.member_urls)
        lines.append("")

    if report.singletons:
        lines.append("## Unique Files")
        lines.append("These files appear to be unique with no similar counterparts:")
        lines.append("")
        lines.extend(f"- `{url}`" for url in report.singletons)
    return "\n".join(lines)


class ReportWriter:

    def __init__(self, store: DataStore, silent_mode: bool = False):
        self.store = store
        self.silent_mode = silent_mode

    def write_endpoint_report(self, domain: str) -> Optional[str]:
        try:
            records = self.store.read_endpoints(domain)
        except StoreReadError as e:
            logger.warning(f"Skipping endpoint report for {domain}: {e.reason}")
            return None
        if not records:
            return None
        return self.store.write_report(domain, ENDPOINT_REPORT, render_endpoint_report(domain, records))

    def write_similarity_report(self, report: ClusterReport) -> str:
        return self.store.write_report(report.domain, SIMILARITY_REPORT, render_similarity_report(report))

    def write_cycle_report(self, report: CycleReport) -> str:
        path = self.store.write_cycle_report(report.cycle_id, report.to_dict())
        if not self.silent_mode:
            logger.info(f"Cycle report saved to {path}")
        return path
