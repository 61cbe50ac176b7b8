"""
Change detection for observed JavaScript payloads.
Classifies a payload as new, changed or unchanged and extracts the new code of a change.
"""

import difflib
from datetime import datetime
from typing import List, Tuple, Union

import jsbeautifier

from jsmonitor.core.errors import StoreReadError
from jsmonitor.core.logger import logger
from jsmonitor.core.utils import sha256_hex
from jsmonitor.models import ChangeResult, CodeSection, DiffStats
from jsmonitor.services.datastore import ContentStore


class ChangeDetector:

    CONTEXT_LINES = 2
    REMOVED_PREVIEW_LINES = 5
    MAX_DIFF_LINES = 2000

    def __init__(
        self,
        store: ContentStore,
        max_lines_per_section: int = 10,
        save_diff: bool = True,
        max_diff_files: int = 50,
        silent_mode: bool = False
    ):
        self.store = store
        self.max_lines_per_section = max_lines_per_section
        self.save_diff = save_diff
        self.max_diff_files = max_diff_files
        self.silent_mode = silent_mode

    def _prettify_js(self, content: str) -> str:
        try:
            opts = jsbeautifier.default_options()
            opts.indent_size = 2
            opts.max_preserve_newlines = 2
            opts.wrap_line_length = 80
            return jsbeautifier.beautify(content, opts)
        except Exception as e:
            logger.debug(f"Beautify failed, diffing raw text: {str(e)[:80]}")
            return content

    def extract_new_code(self, old_text: str, new_text: str) -> Tuple[List[CodeSection], int, int]:
        """Partition a line diff into sections of added code.

        Returns the sections plus the added and removed line counts.
        """
        old_lines = old_text.split('\n') if old_text else []
        new_lines = new_text.split('\n') if new_text else []
        matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

        sections: List[CodeSection] = []
        current = None
        added_count = 0
        removed_count = 0

        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == 'equal':
                if current is not None:
                    room = self.CONTEXT_LINES - len(current.context)
                    if room > 0:
                        current.context.extend(
                            [l for l in new_lines[j1:j2] if l.strip()][:room]
                        )
                continue

            if tag in ('delete', 'replace'):
                removed_count += i2 - i1
                if current is None:
                    current = CodeSection(start_line=j1 + 1)
                room = self.REMOVED_PREVIEW_LINES - len(current.removed)
                if room > 0:
                    current.removed.extend(
                        [l for l in old_lines[i1:i2] if l.strip()][:room]
                    )

            if tag in ('insert', 'replace'):
                added_count += j2 - j1
                if current is None:
                    current = CodeSection(start_line=j1 + 1)
                non_blank = [l for l in new_lines[j1:j2] if l.strip()]
                current.lines = non_blank[:self.max_lines_per_section]
                current.truncated = len(non_blank) > self.max_lines_per_section
                if not current.is_empty():
                    sections.append(current)
                current = None

        if current is not None and not current.is_empty():
            sections.append(current)

        return sections, added_count, removed_count

    def _unified_diff(self, old_text: str, new_text: str, label: str) -> str:
        diff = list(difflib.unified_diff(
            old_text.split('\n'),
            new_text.split('\n'),
            fromfile=f"{label} (previous)",
            tofile=label,
            lineterm='',
            n=self.CONTEXT_LINES
        ))
        if len(diff) > self.MAX_DIFF_LINES:
            diff = diff[:self.MAX_DIFF_LINES] + [f"... {len(diff) - self.MAX_DIFF_LINES} more lines"]
        return '\n'.join(diff)

    def classify(self, domain: str, url: str, data: Union[bytes, str]) -> ChangeResult:
        if isinstance(data, str):
            data = data.encode('utf-8')
        content = data.decode('utf-8', errors='replace')
        content_hash = sha256_hex(data)
        lines = content.split('\n')

        with self.store.domain_lock(domain):
            try:
                record = self.store.read_record(domain, url)
            except StoreReadError as e:
                logger.warning(f"Hash store for {domain} unreadable, treating {url} as new: {e.reason}")
                record = None

            previous_hash = record.content_hash if record else None
            if previous_hash == content_hash:
                return ChangeResult(
                    domain=domain, url=url, is_new=False, changed=False,
                    content_hash=content_hash, total_lines=len(lines)
                )

            formatted = self._prettify_js(content)

            if previous_hash is None:
                result = ChangeResult(
                    domain=domain, url=url, is_new=True, changed=True,
                    content_hash=content_hash,
                    preview=lines[:self.max_lines_per_section],
                    preview_truncated=len(lines) > self.max_lines_per_section,
                    total_lines=len(lines)
                )
                self.store.write_content(domain, url, content, formatted)
            else:
                previous_raw = self.store.read_content(domain, url)
                if previous_raw is None:
                    logger.warning(f"Stored content missing for {url}, diffing against empty file")
                    previous_raw = ""
                previous_formatted = self.store.read_formatted(domain, url)
                if previous_formatted is None:
                    previous_formatted = self._prettify_js(previous_raw) if previous_raw else ""

                raw_sections, added, removed = self.extract_new_code(previous_raw, content)
                formatted_sections, _, _ = self.extract_new_code(previous_formatted, formatted)

                result = ChangeResult(
                    domain=domain, url=url, is_new=False, changed=True,
                    content_hash=content_hash,
                    diff_stats=DiffStats(
                        added_lines=added,
                        removed_lines=removed,
                        total_lines=len(lines),
                        file_size=len(data)
                    ),
                    raw_sections=raw_sections,
                    formatted_sections=formatted_sections,
                    total_lines=len(lines)
                )

                self.store.write_content(domain, url, content, formatted)
                self._save_change_documents(result, previous_hash, previous_raw, content,
                                            previous_formatted, formatted)

            self.store.write_hash(domain, url, content_hash)

        if not self.silent_mode:
            if result.is_new:
                logger.info(f"New file: {url} ({len(lines)} lines)")
            else:
                stats = result.diff_stats
                logger.info(
                    f"Changed: {url} (+{stats.added_lines}/-{stats.removed_lines}, "
                    f"{result.section_count} new code sections)"
                )
        return result

    def _save_change_documents(self, result: ChangeResult, previous_hash: str,
                               old_raw: str, new_raw: str, old_formatted: str, new_formatted: str):
        now = datetime.now().isoformat()

        if self.save_diff:
            self.store.save_diff(result.domain, result.url, {
                "url": result.url,
                "timestamp": now,
                "previous_hash": previous_hash,
                "current_hash": result.content_hash,
                "diff_stats": result.diff_stats.to_dict(),
                "raw_diff": self._unified_diff(old_raw, new_raw, result.url),
                "beautified_diff": self._unified_diff(old_formatted, new_formatted, result.url)
            }, self.max_diff_files)

        if result.section_count:
            document = result.to_dict()
            document["timestamp"] = now
            self.store.save_new_code(result.domain, result.url, document, self.max_diff_files)
