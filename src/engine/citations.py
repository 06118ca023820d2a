"""Inline citation verification.

Single Responsibility: Pure text scan for footnote-style citation markers
(``[^n]``) paired with a rendered sources section. No I/O, no state.

A sources section is either a "Sources" heading (``#### Sources:``,
``**Sources**``, ``Sources:``) or at least one footnote definition line
(``[^1]: [[Chronicle/Arin.md]]``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Set

from .constants import _FOOTNOTE_DEFINITION_RE, _FOOTNOTE_MARKER_RE, _SOURCES_HEADING_RE

_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)


def _strip_code_blocks(text: str) -> str:
    return _FENCED_CODE_RE.sub(" ", str(text or ""))


def extract_citation_markers(text: str) -> List[int]:
    """Inline marker numbers in order of appearance (definitions excluded)."""
    return [int(m.group(1)) for m in _FOOTNOTE_MARKER_RE.finditer(_strip_code_blocks(text))]


def extract_footnote_definitions(text: str) -> Set[int]:
    return {int(m.group(1)) for m in _FOOTNOTE_DEFINITION_RE.finditer(_strip_code_blocks(text))}


def has_sources_section(text: str) -> bool:
    body = _strip_code_blocks(text)
    return bool(_SOURCES_HEADING_RE.search(body) or _FOOTNOTE_DEFINITION_RE.search(body))


@dataclass(frozen=True)
class CitationReport:
    markers: tuple[int, ...]
    definitions: frozenset[int]
    has_sources_section: bool

    @property
    def has_markers(self) -> bool:
        return bool(self.markers)

    @property
    def unresolved_markers(self) -> tuple[int, ...]:
        """Markers with no matching definition (only meaningful when definitions exist)."""
        if not self.definitions:
            return ()
        return tuple(sorted({m for m in self.markers if m not in self.definitions}))

    @property
    def is_cited(self) -> bool:
        return self.has_markers and self.has_sources_section


def verify_citations(text: str) -> CitationReport:
    body = _strip_code_blocks(text)
    return CitationReport(
        markers=tuple(extract_citation_markers(body)),
        definitions=frozenset(extract_footnote_definitions(body)),
        has_sources_section=has_sources_section(body),
    )


def has_inline_citations(text: str) -> bool:
    """True when ``text`` has at least one ``[^n]`` marker and a sources section."""
    return verify_citations(text).is_cited
