# src/wiki_moderation/services/sections.py
"""Section handling for wikitext.

Section 0 is the text before the first heading. Section N starts at the
N-th heading and runs until the next heading of the same or a higher level,
so it includes its subsections.
"""

from __future__ import annotations

import re

SECTION_NEW = "new"

_HEADING_RE = re.compile(r"^(={1,6})[ \t]*(.+?)[ \t]*\1[ \t]*$", re.MULTILINE)


def _section_spans(text: str) -> list[tuple[int, int]]:
    """Return (start, end) offsets of every section, section 0 included."""
    headings = [(match.start(), len(match.group(1))) for match in _HEADING_RE.finditer(text)]
    first = headings[0][0] if headings else len(text)
    spans = [(0, first)]
    for index, (start, level) in enumerate(headings):
        end = len(text)
        for next_start, next_level in headings[index + 1:]:
            if next_level <= level:
                end = next_start
                break
        spans.append((start, end))
    return spans


def get_section(text: str, section: str) -> str | None:
    """Return the text of ``section``, or None if it does not exist."""
    if not section.isdigit():
        return None
    spans = _section_spans(text)
    number = int(section)
    if number >= len(spans):
        return None
    start, end = spans[number]
    return text[start:end]


def replace_section(text: str, section: str | None, new_text: str) -> str | None:
    """Return ``text`` with ``section`` replaced by ``new_text``.

    Args:
        text: Full page text.
        section: Section number as a string, ``"new"`` to append a section,
            or an empty value to replace the whole text.
        new_text: Replacement for the section, heading included.

    Returns:
        The updated full text, or None if the section does not exist.
    """
    if not section:
        return new_text
    if section == SECTION_NEW:
        if not text.strip():
            return new_text
        return text.rstrip("\n") + "\n\n" + new_text.strip("\n")
    if not section.isdigit():
        return None

    spans = _section_spans(text)
    number = int(section)
    if number >= len(spans):
        return None
    start, end = spans[number]

    # Keep the whitespace which separated the old section from the next one.
    old = text[start:end]
    trailing = old[len(old.rstrip()):]
    replacement = new_text.rstrip()
    if end < len(text) and not trailing:
        trailing = "\n"
    return text[:start] + replacement + trailing + text[end:]
