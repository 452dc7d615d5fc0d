"""Manual section scanning and merging for the summary document.

A manual section is hand-written text between a marker pair:

    <!-- BEGIN MANUAL SECTION: Project Notes -->
    ...anything...
    <!-- END MANUAL SECTION: Project Notes -->

The inner text is captured byte-for-byte and re-emitted unchanged; only its
position in the regenerated document can move.
"""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

BEGIN_TEMPLATE = "<!-- BEGIN MANUAL SECTION: {name} -->"
END_TEMPLATE = "<!-- END MANUAL SECTION: {name} -->"

_BEGIN_RE = re.compile(r"<!-- BEGIN MANUAL SECTION: ([^>]+?) -->")

# Well-known sections and the generated heading they are placed before
ANCHORED_SECTIONS = {
    "Project Notes": "### Open Patterns",
    "Custom Commands": "## Session Continuation",
}

TRAILING_HEADING = "## Manual Sections"


@dataclass
class ManualSection:
    name: str
    content: str
    # Offsets of the whole marked region in the scanned text
    start: int
    end: int


def scan_manual_sections(text: str) -> list[ManualSection]:
    """Find every terminated manual section, in encounter order.

    A begin marker with no matching end marker (same name) is ignored and
    logged; scanning resumes right after it, so a later well-formed section
    is still found. Markers nested inside a section belong to its content.
    """
    sections: list[ManualSection] = []
    pos = 0
    while True:
        match = _BEGIN_RE.search(text, pos)
        if match is None:
            break
        name = match.group(1).strip()
        end_marker = END_TEMPLATE.format(name=name)
        end_idx = text.find(end_marker, match.end())
        if end_idx == -1:
            logger.warning("Ignoring unterminated manual section %r at offset %d",
                           name, match.start())
            pos = match.end()
            continue
        sections.append(ManualSection(
            name=name,
            content=text[match.end():end_idx],
            start=match.start(),
            end=end_idx + len(end_marker),
        ))
        pos = end_idx + len(end_marker)
    return sections


def render_section(section: ManualSection) -> str:
    """The marked region exactly as it is re-emitted."""
    return (
        BEGIN_TEMPLATE.format(name=section.name)
        + section.content
        + END_TEMPLATE.format(name=section.name)
    )


def _find_anchor(body: str, anchor: str) -> int:
    """Offset of the anchor heading at the start of a line, or -1."""
    match = re.search(rf"^{re.escape(anchor)}$", body, re.MULTILINE)
    return match.start() if match else -1


def merge_manual_sections(body: str,
                          sections: list[ManualSection]) -> tuple[str, list[str]]:
    """Splice captured manual sections into a freshly generated body.

    The first section for each anchored name goes immediately before its
    anchor heading; if the anchor is missing from the body it is dropped.
    Everything else is appended, in encounter order, under a trailing
    "Manual Sections" heading. With no sections the body is returned as is.

    Returns the merged text and the names of the sections it contains, in
    encounter order.
    """
    if not sections:
        return body, []

    merged = body
    placed: set[str] = set()
    kept: list[str] = []
    trailing: list[ManualSection] = []

    for section in sections:
        anchor = ANCHORED_SECTIONS.get(section.name)
        if anchor is None or section.name in placed:
            trailing.append(section)
            kept.append(section.name)
            continue
        placed.add(section.name)
        idx = _find_anchor(merged, anchor)
        if idx == -1:
            logger.warning("Anchor %r not found; dropping manual section %r",
                           anchor, section.name)
            continue
        block = f"### {section.name}\n{render_section(section)}\n\n"
        merged = merged[:idx] + block + merged[idx:]
        kept.append(section.name)

    if trailing:
        merged += f"\n\n{TRAILING_HEADING}\n"
        for section in trailing:
            merged += f"\n### {section.name}\n{render_section(section)}\n"

    return merged, kept
