"""Term extraction shared by ingestion, clustering and tagging."""

import re
from collections import Counter

_LATIN_RE = re.compile(r"[A-Za-z][A-Za-z0-9_+\-']*")
# CJK ideographs, kana and hangul; each run is split into character bigrams
_CJK_RE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\u3040-\u30ff\uac00-\ud7af]+")

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "for", "from",
    "has", "have", "if", "in", "into", "is", "it", "its", "of", "on", "or", "so",
    "than", "that", "the", "their", "then", "there", "these", "this", "to", "was",
    "we", "were", "what", "when", "which", "will", "with", "you", "your",
}


def latin_terms(text: str) -> list[str]:
    """Lowercased Latin-script words, stopwords and single letters removed."""
    terms = []
    for match in _LATIN_RE.finditer(text):
        word = match.group().lower().strip("-'")
        if len(word) >= 2 and word not in STOPWORDS:
            terms.append(word)
    return terms


def cjk_bigrams(text: str) -> list[str]:
    """Character bigrams of every CJK run (a lone character stands alone)."""
    grams = []
    for match in _CJK_RE.finditer(text):
        run = match.group()
        if len(run) == 1:
            grams.append(run)
            continue
        grams.extend(run[i:i + 2] for i in range(len(run) - 1))
    return grams


def extract_terms(text: str) -> list[str]:
    """All clustering terms of a text, in order of appearance."""
    return latin_terms(text) + cjk_bigrams(text)


def term_frequencies(texts: list[str]) -> Counter:
    """Count Latin terms across texts, preserving first-seen order on ties."""
    counts: Counter = Counter()
    for text in texts:
        counts.update(latin_terms(text))
    return counts
