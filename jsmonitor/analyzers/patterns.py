"""
Regular expression catalog for endpoint discovery.
Patterns are grouped by category and compiled once per matcher.
"""

import re
from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple, Iterator

from jsmonitor.core.logger import logger


@dataclass
class PatternMatch:
    category: str
    offset: int
    value: Optional[str] = None
    parts: Optional[Tuple[str, str]] = None
    method: Optional[str] = None
    description: str = ""


class PatternMatcher:

    URL_PATTERNS = [
        r'''['"`]/api/[^'"`\s]+['"`]''',
        r'''['"`]/v\d+/[^'"`\s]+['"`]''',
        r'''['"`]/api/v\d+/[^'"`\s]+['"`]''',
        r'''['"`]/rest/[^'"`\s]+['"`]''',
        r'''['"`]/graphql[^'"`\s]*['"`]''',
        r'''['"`]/auth/[^'"`\s]+['"`]''',
        r'''['"`]/users?/[^'"`\s]+['"`]''',
        r'''['"`]/admin/[^'"`\s]+['"`]''',
        r'''['"`]/dashboard/[^'"`\s]+['"`]''',
        r'''['"`]/(?:login|logout|register|signin|signup)[^'"`\s]*['"`]''',
        r'''['"`]/(?:profile|settings|config|status|health|metrics|debug)[^'"`\s]*['"`]''',
        r'''['"`]/data/[^'"`\s]+['"`]''',
        r'''['"`]/(?:search|upload|download|export|import)[^'"`\s]*['"`]''',
        r'''['"`]/[a-zA-Z0-9][a-zA-Z0-9_\-/]*\.[a-zA-Z0-9]+['"`]''',
        r'''['"`]/[a-zA-Z0-9][a-zA-Z0-9_\-/]*/[a-zA-Z0-9][a-zA-Z0-9_\-]*['"`]''',
    ]

    HTTP_METHOD_PATTERNS = [
        r'''\.(?P<method>get|post|put|patch|delete|head|options)\s*\(\s*['"`](?P<url>[^'"`]+)['"`]''',
        r'''method\s*:\s*['"`](?P<method>GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)['"`][^}]*?url\s*:\s*['"`](?P<url>[^'"`]+)['"`]''',
        r'''['"`](?P<method>GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)['"`]\s*,\s*['"`](?P<url>[^'"`]+)['"`]''',
    ]

    FETCH_PATTERNS = [
        r'''fetch\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''\$\.(?:ajax|get|post|getJSON)\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''axios\.[a-zA-Z]+\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''axios\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''\.open\s*\(\s*['"`](?P<method>[a-zA-Z]+)['"`]\s*,\s*['"`](?P<url>[^'"`]+)['"`]''',
    ]

    ROUTER_PATTERNS = [
        r'''router\.[a-zA-Z]+\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''app\.[a-zA-Z]+\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''\b(?:route|path|endpoint)\s*:\s*['"`]([^'"`]+)['"`]''',
    ]

    WEBSOCKET_PATTERNS = [
        r'''new\s+WebSocket\s*\(\s*['"`]([^'"`]+)['"`]''',
        r'''wss?://[^'"`\s]+''',
    ]

    FULL_URL_PATTERNS = [
        r'''['"`](https?://[^'"`\s]+)['"`]''',
        r'''https?://[^'"`\s<>()]+''',
    ]

    CONFIG_PATTERNS = [
        r'''(?:API_URL|BASE_URL|ENDPOINT|apiUrl|baseUrl|apiBase|endpoint)\w*['"`]?\s*[:=]\s*['"`]([^'"`]+)['"`]''',
    ]

    DYNAMIC_PATTERNS = [
        r'''['"`]([^'"`\n]*/[^'"`\n]*?)['"`]\s*\+\s*['"`]([^'"`\n]+?)['"`]''',
        r'''['"`]([^'"`\n]+?)['"`]\s*\+\s*['"`]([^'"`\n]*/[^'"`\n]*?)['"`]''',
        r'''\w+\s*\+\s*['"`](/[^'"`\n]+?)['"`]''',
        r'''['"`](/[^'"`\n]+?)['"`]\s*\+\s*\w+''',
        r'''\$\{[^}]*\}(/[^'"`\s}]+)''',
        r'''(/[^'"`\s{]+)\$\{[^}]*\}''',
        r'''(?:const|let|var)\s+\w+\s*=\s*['"`]([^'"`\n]*/[^'"`\n]+?)['"`]''',
    ]

    OBFUSCATED_PATTERNS = [
        r'''['"`]([^'"`\n]{2,}?)['"`]\s*\+\s*['"`]([^'"`\n]{2,}?)['"`]''',
        r'''\.\w+\s*\+\s*['"`](/[^'"`\n]+?)['"`]''',
        r'''['"`](/[^'"`\n]+?)['"`]\s*\+\s*\.\w+''',
        r'''\[[^\]]*['"`]([^'"`\n]*/[^'"`\n]+?)['"`][^\]]*\]\.join\(''',
    ]

    CATALOG = [
        ("url_patterns", URL_PATTERNS),
        ("http_method_patterns", HTTP_METHOD_PATTERNS),
        ("fetch_patterns", FETCH_PATTERNS),
        ("router_patterns", ROUTER_PATTERNS),
        ("websocket_patterns", WEBSOCKET_PATTERNS),
        ("full_url_patterns", FULL_URL_PATTERNS),
        ("config_patterns", CONFIG_PATTERNS),
        ("dynamic_patterns", DYNAMIC_PATTERNS),
        ("obfuscated_patterns", OBFUSCATED_PATTERNS),
    ]

    COMBINING_CATEGORIES = ("dynamic_patterns", "obfuscated_patterns")
    CUSTOM_CATEGORY = "custom_patterns"

    FLAG_MAP = {
        'i': re.IGNORECASE,
        'm': re.MULTILINE,
        's': re.DOTALL,
    }

    def __init__(self, custom_patterns: Optional[List[Dict[str, str]]] = None, silent_mode: bool = False):
        self.silent_mode = silent_mode
        self._compile_patterns()
        self.compiled_custom = self.compile_custom(custom_patterns or [])

    def _compile_patterns(self):
        self.compiled_patterns: List[Tuple[re.Pattern, str, str]] = []
        for category, patterns in self.CATALOG:
            for pattern in patterns:
                try:
                    self.compiled_patterns.append((re.compile(pattern, re.IGNORECASE), category, ""))
                except re.error as e:
                    logger.warning(f"Failed to compile {category} pattern: {e}")

    def compile_custom(self, custom_patterns: List[Dict[str, str]]) -> List[Tuple[re.Pattern, str, str]]:
        compiled = []
        for entry in custom_patterns:
            pattern = entry.get("pattern", "")
            description = entry.get("description", "custom pattern")
            flags = 0
            for flag in entry.get("flags", "") or "":
                flags |= self.FLAG_MAP.get(flag, 0)
            try:
                compiled.append((re.compile(pattern, flags), self.CUSTOM_CATEGORY, description))
            except re.error as e:
                logger.warning(f"Skipping invalid custom pattern '{description}': {e}")
        return compiled

    def scan(self, content: str, extra: Optional[List[Tuple[re.Pattern, str, str]]] = None) -> Iterator[PatternMatch]:
        for compiled, category, description in self.compiled_patterns + self.compiled_custom + (extra or []):
            try:
                for match in compiled.finditer(content):
                    yield self._to_match(match, compiled, category, description)
            except Exception as e:
                logger.debug(f"Pattern error in {category}: {str(e)[:50]}")

    def _to_match(self, match: re.Match, compiled: re.Pattern, category: str, description: str) -> PatternMatch:
        named = compiled.groupindex
        method = match.group("method").upper() if "method" in named and match.group("method") else None

        if category in self.COMBINING_CATEGORIES and compiled.groups >= 2:
            return PatternMatch(
                category=category,
                offset=match.start(),
                parts=(match.group(1) or "", match.group(2) or ""),
                description=description
            )

        if "url" in named:
            value = match.group("url")
        elif compiled.groups >= 1:
            value = match.group(1)
        else:
            value = match.group(0)

        return PatternMatch(
            category=category,
            offset=match.start(),
            value=value or match.group(0),
            method=method,
            description=description
        )
