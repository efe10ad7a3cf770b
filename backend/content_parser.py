"""Markdown parsing: clean text, wikilinks, headings, tags and code blocks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from models import LinkReference

_FRONTMATTER_RE = re.compile(r"^---\r?\n[\s\S]*?\r?\n---\r?\n")
_FRONTMATTER_BODY_RE = re.compile(r"^---\r?\n([\s\S]*?)\r?\n---")
_FENCED_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`[^`]+`")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_MD_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_WIKILINK_ALIAS_RE = re.compile(r"\[\[([^\]|]+)\|([^\]]+)\]\]")
_WIKILINK_PLAIN_RE = re.compile(r"\[\[([^\]]+)\]\]")
_HTML_RE = re.compile(r"<[^>]+>")
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC_RE = re.compile(r"\*([^*]+)\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__([^_]+)__")
_ITALIC_UNDERSCORE_RE = re.compile(r"_([^_]+)_")
_STRIKE_RE = re.compile(r"~~([^~]+)~~")
_HEADING_MARKER_RE = re.compile(r"(?m)^#{1,6}\s+")
_BLOCKQUOTE_RE = re.compile(r"(?m)^>\s+")
_BULLET_RE = re.compile(r"(?m)^[ \t]*[-*+]\s+")
_ORDERED_RE = re.compile(r"(?m)^[ \t]*\d+\.\s+")
_RULE_RE = re.compile(r"(?m)^[ \t]*[-*_]{3,}[ \t]*$")
_WHITESPACE_RE = re.compile(r"\s+")

_LINK_RE = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")
_HEADING_LINE_RE = re.compile(r"(?m)^(#{1,6})\s+(.+)$")
_TAG_RE = re.compile(r"#([a-zA-Z][\w/-]*)")
_YAML_TAGS_RE = re.compile(r"tags:\s*\[([^\]]+)\]")
_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


@dataclass
class ParsedContent:
    clean_text: str
    links: List[LinkReference] = field(default_factory=list)
    headings: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    code_blocks: List[str] = field(default_factory=list)


def _is_invalid_tag(tag: str) -> bool:
    if _HEX_RE.match(tag):
        return True
    if len(tag) < 2:
        return True
    return tag.isdigit()


class ContentParser:
    """Turns raw Markdown into the structured pieces the indexer needs."""

    def parse(self, content: str, path: Optional[str] = None) -> ParsedContent:
        return ParsedContent(
            clean_text=self.strip_markdown(content),
            links=self.extract_links(content),
            headings=self.extract_headings(content),
            tags=self.extract_tags(content),
            code_blocks=self.extract_code_blocks(content),
        )

    def strip_markdown(self, content: str) -> str:
        text = content or ""
        text = _FRONTMATTER_RE.sub("", text, count=1)
        text = _FENCED_RE.sub(" ", text)
        text = _INLINE_CODE_RE.sub(" ", text)
        text = _IMAGE_RE.sub(r"\1", text)
        text = _MD_LINK_RE.sub(r"\1", text)
        text = _WIKILINK_ALIAS_RE.sub(r"\2", text)
        text = _WIKILINK_PLAIN_RE.sub(r"\1", text)
        text = _HTML_RE.sub(" ", text)
        text = _BOLD_RE.sub(r"\1", text)
        text = _ITALIC_RE.sub(r"\1", text)
        text = _BOLD_UNDERSCORE_RE.sub(r"\1", text)
        text = _ITALIC_UNDERSCORE_RE.sub(r"\1", text)
        text = _STRIKE_RE.sub(r"\1", text)
        text = _HEADING_MARKER_RE.sub("", text)
        text = _BLOCKQUOTE_RE.sub("", text)
        text = _BULLET_RE.sub("", text)
        text = _ORDERED_RE.sub("", text)
        text = _RULE_RE.sub("", text)
        return _WHITESPACE_RE.sub(" ", text).strip()

    def extract_links(self, content: str) -> List[LinkReference]:
        links: List[LinkReference] = []
        for line_number, line in enumerate((content or "").split("\n")):
            for match in _LINK_RE.finditer(line):
                display = match.group(2)
                links.append(
                    LinkReference(
                        target_title=match.group(1).strip(),
                        display_text=display.strip() if display else None,
                        line_number=line_number,
                    )
                )
        return links

    def extract_headings(self, content: str) -> List[str]:
        return [m.group(2).strip() for m in _HEADING_LINE_RE.finditer(content or "")]

    def extract_tags(self, content: str) -> List[str]:
        tags: List[str] = []

        def add(tag: str) -> None:
            if tag not in tags:
                tags.append(tag)

        for match in _TAG_RE.finditer(content or ""):
            tag = match.group(1)
            if not _is_invalid_tag(tag):
                add("#" + tag)

        front = _FRONTMATTER_BODY_RE.match(content or "")
        if front:
            yaml_tags = _YAML_TAGS_RE.search(front.group(1))
            if yaml_tags:
                for raw in yaml_tags.group(1).split(","):
                    tag = raw.strip().strip("'\"")
                    if tag and not _is_invalid_tag(tag.lstrip("#")):
                        add(tag if tag.startswith("#") else "#" + tag)
        return tags

    def extract_code_blocks(self, content: str) -> List[str]:
        return [m.group(0) for m in _FENCED_RE.finditer(content or "")]

    @staticmethod
    def line_number(content: str, position: int) -> int:
        return content[:position].count("\n")
