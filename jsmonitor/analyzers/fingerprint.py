"""
Structural fingerprints of JavaScript file versions.
Used only for similarity comparison, never for change detection.
"""

import re
from typing import Set

from jsmonitor.core.utils import sha256_hex
from jsmonitor.models import Fingerprint, SimilarityScore


class Fingerprinter:

    SIGNATURE_PATTERNS = [
        r'function\s+(\w+)\s*\([^)]*\)',
        r'(?:const|let|var)\s+(\w+)\s*=\s*\([^)]*\)\s*=>',
        r'(\w+)\s*\([^)]*\)\s*\{',
        r'class\s+(\w+)(?:\s+extends\s+\w+)?',
    ]

    IMPORT_EXPORT_PATTERNS = [
        r'import\s+[^;]+;',
        r'export\s+[^;\n]+;?',
    ]

    SIGNATURE_WEIGHT = 0.4
    IMPORT_EXPORT_WEIGHT = 0.3
    CONTENT_WEIGHT = 0.3

    def __init__(self):
        self._signature_patterns = [re.compile(p) for p in self.SIGNATURE_PATTERNS]
        self._import_export_patterns = [re.compile(p) for p in self.IMPORT_EXPORT_PATTERNS]

    @staticmethod
    def _collapse(text: str) -> str:
        return re.sub(r'\s+', ' ', text).strip()

    def normalize(self, code: str) -> str:
        without_blocks = re.sub(r'/\*.*?\*/', '', code, flags=re.DOTALL)
        without_lines = re.sub(r'//[^\n]*', '', without_blocks)
        return self._collapse(without_lines)

    def extract_signatures(self, code: str) -> Set[str]:
        signatures = set()
        for pattern in self._signature_patterns:
            for match in pattern.finditer(code):
                signatures.add(self._collapse(match.group(0)))
        return signatures

    def extract_import_exports(self, code: str) -> Set[str]:
        statements = set()
        for pattern in self._import_export_patterns:
            for match in pattern.finditer(code):
                statements.add(self._collapse(match.group(0)))
        return statements

    def create(self, code: str, url: str = "") -> Fingerprint:
        return Fingerprint(
            url=url,
            function_signatures=sorted(self.extract_signatures(code)),
            import_export_statements=sorted(self.extract_import_exports(code)),
            normalized_content_hash=sha256_hex(self.normalize(code)),
            code_length=len(code)
        )

    @staticmethod
    def jaccard(a: Set[str], b: Set[str]) -> float:
        union = a | b
        if not union:
            return 0.0
        return len(a & b) / len(union)

    def similarity(self, a: Fingerprint, b: Fingerprint) -> SimilarityScore:
        signatures = self.jaccard(set(a.function_signatures), set(b.function_signatures))
        import_exports = self.jaccard(set(a.import_export_statements), set(b.import_export_statements))
        content_match = bool(a.normalized_content_hash) and a.normalized_content_hash == b.normalized_content_hash

        overall = (
            self.SIGNATURE_WEIGHT * signatures
            + self.IMPORT_EXPORT_WEIGHT * import_exports
            + (self.CONTENT_WEIGHT if content_match else 0.0)
        )
        return SimilarityScore(
            overall=round(overall, 4),
            signatures=round(signatures, 4),
            import_exports=round(import_exports, 4),
            content_match=content_match
        )
