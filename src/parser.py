"""
BACKLOG SYNC - Markdown Parser
==============================
Turns a backlog document into ParsedItems.

Only level-three headings carrying a checkbox are items:

    ### [ ] Queued item
    ### [x] Item already done

Everything between one item heading and the next is its description,
up to a `---` separator. Bullet checkboxes (`- [ ]`) are not items.
"""

import hashlib
import re
from typing import List, Tuple

from .schema import ParsedItem, ParseResult

HEADING_CHECKBOX_PATTERN = re.compile(r"^###\s+\[([ xX])\]\s+(.+)$")
SECTION_SEPARATOR = "---"


def fingerprint(text: str) -> str:
    """SHA-256 hex digest of the raw document"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _find_headings(lines: List[str]) -> List[Tuple[int, bool, str]]:
    headings = []
    for index, line in enumerate(lines):
        match = HEADING_CHECKBOX_PATTERN.match(line.strip())
        if not match:
            continue
        content = match.group(2).strip()
        if content:
            headings.append((index, match.group(1).lower() == "x", content))
    return headings


def _collect_description(lines: List[str]) -> str:
    collected = []
    for line in lines:
        if line.strip() == SECTION_SEPARATOR:
            break
        collected.append(line)

    start, end = 0, len(collected)
    while start < end and not collected[start].strip():
        start += 1
    while end > start and not collected[end - 1].strip():
        end -= 1
    return "\n".join(collected[start:end])


def parse_backlog_markdown(text: str) -> ParseResult:
    """
    Parse a backlog document.

    Never fails: a document without item headings yields no items,
    and the hash is always computed over the full input.
    """
    lines = text.split("\n")
    headings = _find_headings(lines)

    items = []
    for idx, (line_index, checked, content) in enumerate(headings):
        end = headings[idx + 1][0] if idx + 1 < len(headings) else len(lines)
        items.append(ParsedItem(
            content=content,
            description=_collect_description(lines[line_index + 1:end]),
            checked=checked,
            line_number=line_index + 1,
        ))

    return ParseResult(items=items, hash=fingerprint(text))
