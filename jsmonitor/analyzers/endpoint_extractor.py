"""
Endpoint extraction from JavaScript sources.
Combines the regex catalog, syntax-tree resolution and a line-context scan,
then scores, filters and deduplicates candidates by url.
"""

import re
from typing import List, Dict, Optional, Tuple

from jsmonitor.analyzers.patterns import PatternMatcher, PatternMatch
from jsmonitor.analyzers.syntax_resolver import SyntaxResolver, ResolutionResult
from jsmonitor.core.logger import logger
from jsmonitor.models import Endpoint, EndpointSummary, ConfidenceLevel


CATEGORY_SCORES = {
    "url_patterns": 3,
    "http_method_patterns": 4,
    "fetch_patterns": 5,
    "router_patterns": 4,
    "websocket_patterns": 5,
    "full_url_patterns": 5,
    "config_patterns": 3,
    "dynamic_patterns": 4,
    "obfuscated_patterns": 3,
    "custom_patterns": 3,
    "network_call": 5,
    "network_call_resolved": 5,
    "ast_literal": 2,
    "template_literal": 3,
    "template_literal_resolved": 4,
    "string_concatenation": 4,
    "variable_assignment": 3,
    "line_analysis": 1,
}

PREFERRED_CATEGORIES = ("network_call", "network_call_resolved", "fetch_patterns")

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")
_METHOD_PATTERN = re.compile(r'\b(' + '|'.join(HTTP_METHODS) + r')\b', re.IGNORECASE)

_QUOTES = "'\"`"
_TRAILING_JUNK = re.compile(r'[,;)}\]]+$')

_INVALID_PATTERNS = [
    re.compile(r'^[0-9]+$'),
    re.compile(r'^[a-zA-Z]+$'),
    re.compile(r'^[^a-zA-Z0-9/.$]'),
    re.compile(r'^(?:true|false|null|undefined|NaN)$', re.IGNORECASE),
    re.compile(
        r'^(?:var|let|const|function|return|if|else|for|while|do|switch|case|break|continue'
        r'|class|new|this|typeof|instanceof|void|delete|in|of|try|catch|finally|throw'
        r'|import|export|default|async|await|yield)$',
        re.IGNORECASE
    ),
    re.compile(r'^\s+$'),
    re.compile(r'''^[\s'"`,;(){}\[\].:!?<>=+\-*&|^~%#@\\]+$'''),
]

_VALID_PATTERNS = [
    re.compile(r'^/[a-zA-Z0-9]'),
    re.compile(r'^https?://', re.IGNORECASE),
    re.compile(r'^wss?://', re.IGNORECASE),
    re.compile(r'\.[a-zA-Z0-9]+$'),
    re.compile(r'/[a-zA-Z0-9]'),
    re.compile(
        r'api|graphql|rest|auth|login|admin|dashboard|config|upload|download|data|users?|profile|settings',
        re.IGNORECASE
    ),
    re.compile(r'\$\{[^}]*\}'),
    re.compile(r'^[a-zA-Z0-9._-]+/[a-zA-Z0-9._/-]+'),
]

_LINE_PATTERNS = [
    re.compile(r'''['"`]([^'"`]*/[^'"`\s]*\.[^'"`\s]*?)['"`]'''),
    re.compile(r'''['"`](/[^'"`\s]*/[^'"`\s]*?)['"`]'''),
    re.compile(r'''(['"`])(https?://[^'"`\s]+)\1'''),
]


def clean_endpoint(candidate: Optional[str]) -> str:
    """Strip quotes, whitespace and trailing punctuation until stable."""
    if not candidate:
        return ""
    value = candidate
    while True:
        previous = value
        value = value.strip()
        if value[:1] in _QUOTES and value:
            value = value[1:]
        if value[-1:] in _QUOTES and value:
            value = value[:-1]
        value = _TRAILING_JUNK.sub('', value)
        if value == previous:
            return value


def is_valid_endpoint(candidate: Optional[str]) -> bool:
    if not candidate or not isinstance(candidate, str):
        return False
    endpoint = clean_endpoint(candidate)
    if len(endpoint) < 2:
        return False
    if any(p.search(endpoint) for p in _INVALID_PATTERNS):
        return False
    return any(p.search(endpoint) for p in _VALID_PATTERNS)


def extract_context(content: str, offset: int, radius: int = 50) -> str:
    start = max(0, offset - radius)
    end = min(len(content), offset + radius)
    return re.sub(r'\s+', ' ', content[start:end]).strip()


def detect_http_method(text: str) -> str:
    match = _METHOD_PATTERN.search(text or "")
    return match.group(1).upper() if match else "UNKNOWN"


def calculate_confidence(url: str, category: str, content: str, offset: int) -> ConfidenceLevel:
    score = CATEGORY_SCORES.get(category, 1)

    if url.startswith('/api/'):
        score += 3
    if re.match(r'^/v\d+', url):
        score += 2
    if 'graphql' in url:
        score += 2
    if url.startswith('http'):
        score += 2
    if url.startswith('ws'):
        score += 2
    for keyword in ('auth', 'user', 'admin'):
        if keyword in url:
            score += 1

    context = extract_context(content, offset).lower()
    for keyword, bonus in (('fetch', 2), ('axios', 2), ('ajax', 2), ('request', 1), ('url', 1)):
        if keyword in context:
            score += bonus

    if score >= 8:
        return ConfidenceLevel.HIGH
    if score >= 4:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def merge_endpoints(a: Endpoint, b: Endpoint) -> Endpoint:
    """Pick the stronger of two records for the same url.

    Total and commutative: merge_endpoints(a, b) == merge_endpoints(b, a).
    """
    if a.confidence.rank != b.confidence.rank:
        return a if a.confidence.rank > b.confidence.rank else b

    a_preferred = a.category in PREFERRED_CATEGORIES
    b_preferred = b.category in PREFERRED_CATEGORIES
    if a_preferred != b_preferred:
        return a if a_preferred else b

    def order(e: Endpoint) -> Tuple:
        return (e.line, e.category, e.method, e.source_file, e.context)

    return a if order(a) <= order(b) else b


def summarize(endpoints: List[Endpoint]) -> EndpointSummary:
    summary = EndpointSummary(total=len(endpoints))
    for endpoint in endpoints:
        if endpoint.confidence == ConfidenceLevel.HIGH:
            summary.high += 1
        elif endpoint.confidence == ConfidenceLevel.MEDIUM:
            summary.medium += 1
        else:
            summary.low += 1
        summary.by_method[endpoint.method] = summary.by_method.get(endpoint.method, 0) + 1
        summary.by_category[endpoint.category] = summary.by_category.get(endpoint.category, 0) + 1
    return summary


class EndpointExtractor:

    def __init__(
        self,
        custom_patterns: Optional[List[Dict[str, str]]] = None,
        resolver: Optional[SyntaxResolver] = None,
        silent_mode: bool = False
    ):
        self.silent_mode = silent_mode
        self.matcher = PatternMatcher(custom_patterns, silent_mode=silent_mode)
        self.resolver = resolver or SyntaxResolver(silent_mode=silent_mode)

    def extract(
        self,
        content: str,
        source_url: str,
        custom_patterns: Optional[List[Dict[str, str]]] = None
    ) -> List[Endpoint]:
        endpoints, _ = self.extract_with_status(content, source_url, custom_patterns)
        return endpoints

    def extract_with_status(
        self,
        content: str,
        source_url: str,
        custom_patterns: Optional[List[Dict[str, str]]] = None
    ) -> Tuple[List[Endpoint], bool]:
        """Run all passes; the flag reports whether the syntax-tree pass degraded."""
        table: Dict[str, Endpoint] = {}
        extra = self.matcher.compile_custom(custom_patterns) if custom_patterns else None

        self._pattern_pass(content, source_url, table, extra)
        resolution = self._syntax_pass(content, source_url, table)
        self._line_pass(content, source_url, table)

        endpoints = sorted(table.values(), key=lambda e: (-e.confidence.rank, e.url))
        if resolution.degraded:
            logger.debug(f"Syntax pass degraded for {source_url}, used pattern and line passes")
        return endpoints, resolution.degraded

    def _add(self, table: Dict[str, Endpoint], endpoint: Endpoint):
        existing = table.get(endpoint.url)
        table[endpoint.url] = endpoint if existing is None else merge_endpoints(existing, endpoint)

    def _line_number(self, content: str, offset: int) -> int:
        return content.count('\n', 0, offset) + 1

    def _candidate_from_match(self, match: PatternMatch) -> Optional[str]:
        if match.parts is None:
            return clean_endpoint(match.value)
        part1 = clean_endpoint(match.parts[0])
        part2 = clean_endpoint(match.parts[1])
        if not part1 or not part2:
            return None
        if match.category == "dynamic_patterns":
            return part1 + part2
        combined = part1 + part2
        for option in (combined, part1, part2):
            if is_valid_endpoint(option):
                return option
        return None

    def _pattern_pass(self, content: str, source_url: str, table: Dict[str, Endpoint], extra=None):
        for match in self.matcher.scan(content, extra):
            try:
                candidate = clean_endpoint(self._candidate_from_match(match))
                if not candidate or not is_valid_endpoint(candidate):
                    continue
                window = content[max(0, match.offset - 100):match.offset + 100]
                self._add(table, Endpoint(
                    url=candidate,
                    method=match.method or detect_http_method(window),
                    category=match.category,
                    confidence=calculate_confidence(candidate, match.category, content, match.offset),
                    source_file=source_url,
                    line=self._line_number(content, match.offset),
                    context=extract_context(content, match.offset)
                ))
            except Exception as e:
                logger.debug(f"Skipping {match.category} candidate: {str(e)[:80]}")

    def _syntax_pass(self, content: str, source_url: str, table: Dict[str, Endpoint]) -> ResolutionResult:
        try:
            resolution = self.resolver.resolve(content)
        except Exception as e:
            logger.debug(f"Syntax resolution failed for {source_url}: {str(e)[:80]}")
            return ResolutionResult(degraded=True)

        for candidate in resolution.candidates:
            try:
                url = clean_endpoint(candidate.value)
                if not is_valid_endpoint(url):
                    continue
                if candidate.high_confidence:
                    confidence = ConfidenceLevel.HIGH
                else:
                    confidence = calculate_confidence(url, candidate.category, content, candidate.offset)
                self._add(table, Endpoint(
                    url=url,
                    method=candidate.method,
                    category=candidate.category,
                    confidence=confidence,
                    source_file=source_url,
                    line=candidate.line,
                    context=extract_context(content, candidate.offset)
                ))
            except Exception as e:
                logger.debug(f"Skipping {candidate.category} candidate: {str(e)[:80]}")
        return resolution

    def _line_pass(self, content: str, source_url: str, table: Dict[str, Endpoint]):
        for index, line in enumerate(content.split('\n')):
            stripped = line.strip()
            if not stripped or stripped.startswith('//') or stripped.startswith('/*'):
                continue
            for pattern in _LINE_PATTERNS:
                try:
                    for match in pattern.finditer(stripped):
                        url = clean_endpoint(match.group(match.lastindex or 0))
                        if not is_valid_endpoint(url):
                            continue
                        self._add(table, Endpoint(
                            url=url,
                            method=detect_http_method(stripped),
                            category="line_analysis",
                            confidence=calculate_confidence(url, "line_analysis", stripped, 0),
                            source_file=source_url,
                            line=index + 1,
                            context=stripped[:200]
                        ))
                except Exception as e:
                    logger.debug(f"Line pass error at {index + 1}: {str(e)[:80]}")
