"""Relatedness scoring between token (name, symbol) pairs.

Two scoring paths exist. Names written in CJK ideographs are compared by
pronunciation: both names are romanized to tone-free pinyin and the pinyin
strings (and their initials) are compared with the bigram Dice metric, so
near-homophones such as 索拉拉 / 锁啦啦 score high even though they share no
characters. Everything else goes through the literal path, which mixes symbol
and name similarity with keyword overlap and substring containment.

All functions here are pure and safe to call from any thread.
"""

from __future__ import annotations

import re
from collections import Counter
from functools import lru_cache
from typing import Iterable, NamedTuple

from pypinyin import Style, lazy_pinyin

_CJK_CLASS = "\u3400-\u4dbf\u4e00-\u9fff"
_CJK_RE = re.compile(f"[{_CJK_CLASS}]")
_CJK_RUN_RE = re.compile(f"[{_CJK_CLASS}]+")
_NON_WORD_RE = re.compile(f"[^a-z0-9{_CJK_CLASS}]+")
_SEPARATOR_RE = re.compile(f"[^A-Za-z0-9{_CJK_CLASS}]+")
_CASE_SPLIT_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|[0-9]+")

MEME_LEXICON: frozenset[str] = frozenset(
    {
        "doge",
        "pepe",
        "shib",
        "inu",
        "cat",
        "frog",
        "moon",
        "rocket",
        "bonk",
        "wojak",
        "chad",
        "giga",
        "based",
        "elon",
        "trump",
    }
)

# Weights of the phonetic path.
PHONETIC_PINYIN_WEIGHT = 0.70
PHONETIC_STRING_WEIGHT = 0.20
PHONETIC_CONTAIN_WEIGHT = 0.10
PINYIN_FULL_WEIGHT = 0.8
PINYIN_INITIAL_WEIGHT = 0.2

# Weights of the literal path.
LITERAL_SYMBOL_WEIGHT = 0.5
LITERAL_NAME_WEIGHT = 0.3
LITERAL_KEYWORD_WEIGHT = 0.15
LITERAL_CONTAIN_WEIGHT = 0.05


class Romanized(NamedTuple):
    full: str
    initials: str


def has_cjk(text: str | None) -> bool:
    return bool(text) and _CJK_RE.search(text) is not None


def normalize(text: str | None) -> str:
    """Lowercase and keep only ``[a-z0-9]`` and CJK ideographs."""

    if not text:
        return ""
    return _NON_WORD_RE.sub("", text.lower())


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


def dice_coefficient(first: str, second: str) -> float:
    """Bigram-overlap Dice coefficient, whitespace ignored."""

    first = "".join(first.split())
    second = "".join(second.split())
    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0
    overlap = sum((_bigrams(first) & _bigrams(second)).values())
    return 2.0 * overlap / (len(first) + len(second) - 2)


@lru_cache(maxsize=4096)
def romanize(text: str) -> Romanized:
    """Tone-free pinyin of the CJK characters in *text* plus their initials.

    Text without CJK characters romanizes to its normalized form.
    """

    chars = "".join(_CJK_RE.findall(text or ""))
    if not chars:
        norm = normalize(text)
        return Romanized(norm, norm)
    syllables = [s.lower() for s in lazy_pinyin(chars, style=Style.NORMAL) if s]
    return Romanized("".join(syllables), "".join(s[0] for s in syllables))


def containment_bonus(norm_a: str, norm_b: str) -> float:
    if not norm_a or not norm_b:
        return 0.0
    if norm_a in norm_b or norm_b in norm_a:
        return min(len(norm_a), len(norm_b)) / max(len(norm_a), len(norm_b))
    return 0.0


def pinyin_similarity(name_a: str, name_b: str) -> float:
    rom_a = romanize(name_a)
    rom_b = romanize(name_b)
    return PINYIN_FULL_WEIGHT * dice_coefficient(
        rom_a.full, rom_b.full
    ) + PINYIN_INITIAL_WEIGHT * dice_coefficient(rom_a.initials, rom_b.initials)


def phonetic_score(name_a: str, name_b: str) -> float:
    norm_a = normalize(name_a)
    norm_b = normalize(name_b)
    if norm_a and norm_a == norm_b:
        return 1.0
    value = (
        PHONETIC_PINYIN_WEIGHT * pinyin_similarity(name_a, name_b)
        + PHONETIC_STRING_WEIGHT * dice_coefficient(norm_a, norm_b)
        + PHONETIC_CONTAIN_WEIGHT * containment_bonus(norm_a, norm_b)
    )
    return min(value, 1.0)


def _split_words(text: str) -> Iterable[str]:
    for chunk in _SEPARATOR_RE.split(text):
        if not chunk:
            continue
        latin = _CJK_RUN_RE.sub(" ", chunk)
        for part in latin.split():
            yield from _CASE_SPLIT_RE.findall(part)


def extract_keywords(name: str | None, symbol: str | None = None) -> list[str]:
    """Ordered, de-duplicated keywords for a token.

    Words come from separators and case transitions (two characters or
    more), followed by the symbol, meme-lexicon hits and CJK runs with their
    two-character sub-words.
    """

    keywords: list[str] = []
    seen: set[str] = set()

    def add(word: str) -> None:
        if len(word) >= 2 and word not in seen:
            seen.add(word)
            keywords.append(word)

    name = name or ""
    for word in _split_words(name):
        add(word.lower())
    sym = normalize(symbol)
    if sym and sym not in seen:
        seen.add(sym)
        keywords.append(sym)
    flat = normalize(name)
    for meme in sorted(MEME_LEXICON):
        if meme in flat:
            add(meme)
    for run in _CJK_RUN_RE.findall(name):
        if len(run) <= 4:
            add(run)
        for i in range(len(run) - 1):
            add(run[i : i + 2])
    return keywords


def keyword_overlap(keywords_a: Iterable[str], keywords_b: Iterable[str]) -> float:
    set_a = set(keywords_a)
    set_b = set(keywords_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / min(len(set_a), len(set_b))


def literal_score(name_a: str, symbol_a: str, name_b: str, symbol_b: str) -> float:
    norm_a = normalize(name_a)
    norm_b = normalize(name_b)
    if norm_a and norm_a == norm_b:
        return 1.0
    value = (
        LITERAL_SYMBOL_WEIGHT * dice_coefficient(normalize(symbol_a), normalize(symbol_b))
        + LITERAL_NAME_WEIGHT * dice_coefficient(norm_a, norm_b)
        + LITERAL_KEYWORD_WEIGHT
        * keyword_overlap(extract_keywords(name_a, symbol_a), extract_keywords(name_b, symbol_b))
        + LITERAL_CONTAIN_WEIGHT * containment_bonus(norm_a, norm_b)
    )
    return min(value, 1.0)


def uses_phonetic_path(name_a: str | None, name_b: str | None) -> bool:
    return has_cjk(name_a) or has_cjk(name_b)


def score(
    name_a: str | None,
    symbol_a: str | None,
    name_b: str | None,
    symbol_b: str | None,
) -> float:
    """Relatedness of two tokens in ``[0, 1]``."""

    name_a = name_a or ""
    name_b = name_b or ""
    if uses_phonetic_path(name_a, name_b):
        return phonetic_score(name_a, name_b)
    return literal_score(name_a, symbol_a or "", name_b, symbol_b or "")


__all__ = [
    "MEME_LEXICON",
    "Romanized",
    "has_cjk",
    "normalize",
    "dice_coefficient",
    "romanize",
    "containment_bonus",
    "pinyin_similarity",
    "phonetic_score",
    "extract_keywords",
    "keyword_overlap",
    "literal_score",
    "uses_phonetic_path",
    "score",
]
