"""
Similarity clustering of a domain's stored file versions.
Detects renamed or relocated copies of the same logical script.
"""

from typing import List, Dict, Optional

from jsmonitor.analyzers.fingerprint import Fingerprinter
from jsmonitor.core.errors import StoreReadError
from jsmonitor.core.logger import logger
from jsmonitor.models import Cluster, ClusterReport, Fingerprint, RenameCandidate
from jsmonitor.services.datastore import ContentStore


class SimilarityClusterer:

    RELATIONSHIPS_FILE = "file-relationships.json"
    CLUSTER_REASON = "renamed_or_moved_files"

    def __init__(
        self,
        store: ContentStore,
        threshold: float = 0.7,
        fingerprinter: Optional[Fingerprinter] = None,
        silent_mode: bool = False
    ):
        self.store = store
        self.threshold = threshold
        self.fingerprinter = fingerprinter or Fingerprinter()
        self.silent_mode = silent_mode

    def cluster(self, domain: str) -> ClusterReport:
        with self.store.domain_lock(domain):
            try:
                contents = self.store.list_contents(domain)
            except StoreReadError as e:
                logger.warning(f"Cannot list stored files for {domain}: {e.reason}")
                contents = {}

            fingerprints = {
                url: self.fingerprinter.create(code, url)
                for url, code in contents.items()
            }
            self.store.write_fingerprints(domain, fingerprints)
            report = self.cluster_fingerprints(domain, fingerprints)
            self.store.write_document(domain, self.RELATIONSHIPS_FILE, report.to_dict())

        if not self.silent_mode:
            logger.info(
                f"Clustered {report.total_files} files for {domain}: "
                f"{len(report.clusters)} clusters, {len(report.singletons)} singletons"
            )
        return report

    def cluster_fingerprints(self, domain: str, fingerprints: Dict[str, Fingerprint]) -> ClusterReport:
        """Single linkage against each cluster's seed, in sorted url order.

        A file joins a cluster when it is similar enough to the seed; members
        are not compared with each other, so the result depends on order.
        """
        urls = sorted(fingerprints)
        assigned = set()
        report = ClusterReport(domain=domain, total_files=len(urls))

        for index, seed in enumerate(urls):
            if seed in assigned:
                continue
            assigned.add(seed)
            members = [seed]
            scores = []

            for other in urls[index + 1:]:
                if other in assigned:
                    continue
                score = self.fingerprinter.similarity(fingerprints[seed], fingerprints[other])
                if score.overall >= self.threshold:
                    members.append(other)
                    scores.append(score.overall)
                    assigned.add(other)

            if len(members) > 1:
                report.clusters.append(Cluster(
                    seed_url=seed,
                    member_urls=members,
                    reason=self.CLUSTER_REASON,
                    average_similarity=round(sum(scores) / len(scores), 4)
                ))
            else:
                report.singletons.append(seed)

        return report

    def _read_fingerprints(self, domain: str) -> Dict[str, Fingerprint]:
        try:
            return self.store.read_fingerprints(domain)
        except StoreReadError as e:
            logger.warning(f"Fingerprint store for {domain} unreadable, starting empty: {e.reason}")
            return {}

    def find_potential_renames(
        self,
        domain: str,
        url: str,
        content: str,
        threshold: Optional[float] = None
    ) -> List[RenameCandidate]:
        limit = self.threshold if threshold is None else threshold
        candidate = self.fingerprinter.create(content, url)
        with self.store.domain_lock(domain):
            stored = self._read_fingerprints(domain)

        matches = []
        for other_url, fingerprint in stored.items():
            if other_url == url:
                continue
            score = self.fingerprinter.similarity(candidate, fingerprint)
            if score.overall >= limit:
                matches.append(RenameCandidate(url=other_url, similarity=score))
        matches.sort(key=lambda m: (-m.similarity.overall, m.url))
        return matches

    def record_fingerprint(self, domain: str, url: str, content: str) -> Fingerprint:
        fingerprint = self.fingerprinter.create(content, url)
        with self.store.domain_lock(domain):
            stored = self._read_fingerprints(domain)
            stored[url] = fingerprint
            self.store.write_fingerprints(domain, stored)
        return fingerprint
