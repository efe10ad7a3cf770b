"""
Unit tests for Markdown parsing and n-gram extraction.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from content_parser import ContentParser
from ngrams import NGramExtractor, jaccard, tokenize


SAMPLE = (
    "---\n"
    "tags: [alpha, beta]\n"
    "---\n"
    "# Heading One\n"
    "Some **bold** text with [[Target Note|alias]] and [[Other]].\n"
    "```\n"
    "code here\n"
    "```\n"
    "#project tag and #fff colour\n"
)


class TestContentParser:
    """Test suite for the ContentParser class."""

    def setup_method(self):
        self.parser = ContentParser()

    def test_clean_text_strips_markup(self):
        clean = self.parser.parse(SAMPLE).clean_text
        assert "Some bold text with alias and Other." in clean
        assert "Heading One" in clean
        assert "**" not in clean
        assert "code here" not in clean
        assert "tags:" not in clean

    def test_links_carry_display_text_and_line(self):
        links = self.parser.parse(SAMPLE).links
        assert [link.target_title for link in links] == ["Target Note", "Other"]
        assert links[0].display_text == "alias"
        assert links[1].display_text is None
        assert links[0].line_number == 4

    def test_headings(self):
        assert self.parser.parse(SAMPLE).headings == ["Heading One"]

    def test_tags_merge_inline_and_frontmatter(self):
        tags = self.parser.parse(SAMPLE).tags
        assert tags == ["#project", "#alpha", "#beta"]

    def test_hex_colours_and_numbers_are_not_tags(self):
        assert self.parser.extract_tags("colour #ffffff and issue #123") == []

    def test_code_blocks(self):
        blocks = self.parser.parse(SAMPLE).code_blocks
        assert len(blocks) == 1
        assert "code here" in blocks[0]

    def test_line_number(self):
        assert ContentParser.line_number("a\nb\nc", 4) == 2


class TestNGramExtractor:
    """Test suite for bigram/trigram extraction."""

    def setup_method(self):
        self.extractor = NGramExtractor(min_frequency=2)

    def test_repeated_bigram_is_kept(self):
        result = self.extractor.extract("machine learning models need machine learning data")
        assert list(result.bigrams) == ["machine learning"]
        assert result.bigrams["machine learning"].frequency == 2
        assert result.bigrams["machine learning"].positions == [0, 4]
        assert result.trigrams == {}

    def test_stopwords_break_bigrams(self):
        extractor = NGramExtractor(min_frequency=1)
        result = extractor.extract("the cat sat with the cat")
        assert "the cat" not in result.bigrams
        assert "cat sat" in result.bigrams

    def test_top_phrases_orders_by_frequency(self):
        extractor = NGramExtractor(min_frequency=1)
        phrases = extractor.top_phrases("alpha beta gamma delta gamma delta")
        assert phrases[0] == "gamma delta"

    def test_statistics(self):
        result = self.extractor.extract("neural network neural network")
        stats = NGramExtractor.statistics(result)
        assert stats["total_bigrams"] == 1
        assert stats["total_unique"] == 1


@pytest.mark.unit
def test_tokenize_drops_short_tokens_and_punctuation():
    assert tokenize("An API, of REST-ful design!") == ["api", "rest-ful", "design"]


@pytest.mark.unit
def test_jaccard():
    assert jaccard(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert jaccard([], ["a"]) == 0.0
