"""Bigram / trigram phrase extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List

NGRAM_STOPWORDS: FrozenSet[str] = frozenset(
    """
    the a an and or but in on at to for of with by from as is was are were be
    been being have has had do does did will would should could may might must can
    this that these those i you he she it we they
    """.split()
)

_PUNCT_RE = re.compile(r"[^\w\s-]")


@dataclass
class NGram:
    phrase: str
    frequency: int
    positions: List[int] = field(default_factory=list)
    kind: str = "bigram"


@dataclass
class NGramResult:
    bigrams: Dict[str, NGram] = field(default_factory=dict)
    trigrams: Dict[str, NGram] = field(default_factory=dict)

    @property
    def all_ngrams(self) -> List[str]:
        return list(self.bigrams) + list(self.trigrams)


def tokenize(text: str) -> List[str]:
    return [t for t in _PUNCT_RE.sub(" ", (text or "").lower()).split() if len(t) > 2]


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a = set(a)
    set_b = set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


class NGramExtractor:
    """Extracts repeated multi-word phrases from a single document."""

    def __init__(self, min_frequency: int = 2, stopwords: FrozenSet[str] = NGRAM_STOPWORDS):
        self.min_frequency = min_frequency
        self.stopwords = stopwords

    def extract(self, text: str) -> NGramResult:
        tokens = tokenize(text)
        return NGramResult(bigrams=self._bigrams(tokens), trigrams=self._trigrams(tokens))

    def _collect(self, grams: Dict[str, NGram], phrase: str, position: int, kind: str) -> None:
        existing = grams.get(phrase)
        if existing is None:
            grams[phrase] = NGram(phrase=phrase, frequency=1, positions=[position], kind=kind)
        else:
            existing.frequency += 1
            existing.positions.append(position)

    def _prune(self, grams: Dict[str, NGram]) -> Dict[str, NGram]:
        return {p: g for p, g in grams.items() if g.frequency >= self.min_frequency}

    def _bigrams(self, tokens: List[str]) -> Dict[str, NGram]:
        grams: Dict[str, NGram] = {}
        for i in range(len(tokens) - 1):
            first, second = tokens[i], tokens[i + 1]
            if first in self.stopwords or second in self.stopwords:
                continue
            self._collect(grams, f"{first} {second}", i, "bigram")
        return self._prune(grams)

    def _trigrams(self, tokens: List[str]) -> Dict[str, NGram]:
        grams: Dict[str, NGram] = {}
        for i in range(len(tokens) - 2):
            # Edge words may be stopwords; only the middle one is checked.
            if tokens[i + 1] in self.stopwords:
                continue
            self._collect(grams, f"{tokens[i]} {tokens[i + 1]} {tokens[i + 2]}", i, "trigram")
        return self._prune(grams)

    def top_phrases(self, text: str, top_n: int = 20) -> List[str]:
        result = self.extract(text)
        grams = list(result.bigrams.values()) + list(result.trigrams.values())
        grams.sort(key=lambda g: (-g.frequency, g.positions[0]))
        return [g.phrase for g in grams[:top_n]]

    @staticmethod
    def statistics(result: NGramResult) -> Dict[str, object]:
        def most_frequent(grams: Dict[str, NGram]) -> List[NGram]:
            return sorted(grams.values(), key=lambda g: g.frequency, reverse=True)[:10]

        return {
            "total_bigrams": len(result.bigrams),
            "total_trigrams": len(result.trigrams),
            "total_unique": len(result.all_ngrams),
            "most_frequent_bigrams": most_frequent(result.bigrams),
            "most_frequent_trigrams": most_frequent(result.trigrams),
        }
