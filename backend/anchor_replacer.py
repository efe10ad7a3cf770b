"""Rewrites Markdown so chosen anchors become `[[wikilinks]]`.

Front matter, code, existing links, URLs and headings are never touched.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence, Set

from models import AnchorAssignment, ProtectedZone, Replacement, ReplacementResult, ZoneReason

_FRONTMATTER_RE = re.compile(r"^---\r?\n[\s\S]*?\r?\n---\r?\n")
_FENCED_RE = re.compile(r"(?:```|~~~)[\s\S]*?(?:```|~~~)")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_WIKILINK_RE = re.compile(r"\[\[[^\]]+\]\]")
_MD_LINK_RE = re.compile(r"\[[^\]]*\]\([^)]+\)")
_URL_RE = re.compile(r"https?://[^\s)\]>]+")
_HEADING_RE = re.compile(r"(?m)^#{1,6}\s+.*$")
_WIKILINK_PARTS_RE = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")

CONTEXT_LENGTH = 40


def _scan(pattern: re.Pattern, content: str, reason: ZoneReason) -> List[ProtectedZone]:
    return [ProtectedZone(start=m.start(), end=m.end(), reason=reason) for m in pattern.finditer(content)]


def _inside(position: int, zones: Iterable[ProtectedZone]) -> bool:
    return any(zone.start <= position < zone.end for zone in zones)


def find_protected_zones(content: str) -> List[ProtectedZone]:
    zones: List[ProtectedZone] = []
    front = _FRONTMATTER_RE.match(content)
    if front:
        zones.append(ProtectedZone(start=0, end=front.end(), reason=ZoneReason.FRONTMATTER))
    zones.extend(_scan(_FENCED_RE, content, ZoneReason.CODEBLOCK))

    # Backticks inside a fenced block are not inline code.
    for zone in _scan(_INLINE_CODE_RE, content, ZoneReason.INLINECODE):
        if not _inside(zone.start, zones):
            zones.append(zone)

    zones.extend(_scan(_WIKILINK_RE, content, ZoneReason.WIKILINK))
    zones.extend(_scan(_MD_LINK_RE, content, ZoneReason.MDLINK))
    zones.extend(_scan(_URL_RE, content, ZoneReason.URL))
    zones.extend(_scan(_HEADING_RE, content, ZoneReason.HEADING))
    zones.sort(key=lambda z: z.start)
    return zones


def is_range_protected(start: int, length: int, zones: Sequence[ProtectedZone]) -> bool:
    end = start + length
    for zone in zones:
        if zone.start >= end:
            break
        if start < zone.end and end > zone.start:
            return True
    return False


def make_wikilink(target_title: str, display_text: str = "") -> str:
    if display_text and display_text.lower() != target_title.lower():
        return f"[[{target_title}|{display_text}]]"
    return f"[[{target_title}]]"


def extract_context(content: str, position: int, length: int, context_length: int = CONTEXT_LENGTH):
    before_start = max(0, position - context_length)
    after_end = min(len(content), position + length + context_length)
    before = content[before_start:position]
    after = content[position + length:after_end]

    if before_start > 0:
        space = before.find(" ")
        if 0 < space < 10:
            before = "..." + before[space + 1:]
        else:
            before = "..." + before

    if after_end < len(content):
        space = after.rfind(" ")
        if space > len(after) - 10 and space > 0:
            after = after[:space] + "..."
        else:
            after = after + "..."

    return before.replace("\n", " "), after.replace("\n", " ")


def linked_anchors(content: str, zones: Sequence[ProtectedZone]) -> Set[str]:
    """Lowercased targets and display texts of the wikilinks already in `content`."""
    anchors: Set[str] = set()
    for zone in zones:
        if zone.reason != ZoneReason.WIKILINK:
            continue
        match = _WIKILINK_PARTS_RE.fullmatch(content, zone.start, zone.end)
        if not match:
            continue
        target = match.group(1).split("#", 1)[0].strip()
        if target.lower().endswith(".md"):
            target = target[:-3]
        anchors.add(target.lower())
        anchors.add(target.rsplit("/", 1)[-1].lower())
        if match.group(2):
            anchors.add(match.group(2).strip().lower())
    anchors.discard("")
    return anchors


def find_replacements(
    content: str,
    assignments: Sequence[AnchorAssignment],
    zones: Sequence[ProtectedZone],
    max_replacements: int = 10,
) -> List[Replacement]:
    replacements: List[Replacement] = []
    # Anchors linked by an earlier pass count as used.
    used = linked_anchors(content, zones)
    # Chosen spans become protected so two anchors never overlap.
    claimed: List[ProtectedZone] = list(zones)

    for assignment in sorted(assignments, key=lambda a: a.confidence, reverse=True):
        if len(replacements) >= max_replacements:
            break
        key = assignment.keyword.lower()
        if key in used:
            continue

        pattern = re.compile(r"\b" + re.escape(assignment.keyword) + r"\b", re.IGNORECASE)
        for match in pattern.finditer(content):
            position, matched = match.start(), match.group(0)
            if is_range_protected(position, len(matched), claimed):
                continue

            used.add(key)
            before, after = extract_context(content, position, len(matched))
            replacements.append(
                Replacement(
                    keyword=assignment.keyword,
                    target_id=assignment.target_id,
                    target_title=assignment.target_title,
                    position=position,
                    length=len(matched),
                    original_text=matched,
                    replacement_text=make_wikilink(assignment.target_title, matched),
                    confidence=assignment.confidence,
                    context_before=before,
                    context_after=after,
                    reason=assignment.reason,
                )
            )
            claimed.append(ProtectedZone(start=position, end=position + len(matched), reason=ZoneReason.WIKILINK))
            claimed.sort(key=lambda z: z.start)
            break

    return replacements


def apply_replacements(content: str, replacements: Sequence[Replacement]) -> str:
    result = content
    for r in sorted(replacements, key=lambda r: r.position, reverse=True):
        result = result[:r.position] + r.replacement_text + result[r.position + r.length:]
    return result


def process_content(
    content: str,
    assignments: Sequence[AnchorAssignment],
    max_replacements: int = 10,
) -> ReplacementResult:
    zones = find_protected_zones(content)
    replacements = find_replacements(content, assignments, zones, max_replacements)
    return ReplacementResult(
        original_content=content,
        modified_content=apply_replacements(content, replacements),
        replacements=replacements,
        zones=zones,
    )
