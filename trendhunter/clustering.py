"""Greedy seed-based grouping of related tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from . import similarity
from .types import ClusterCandidate

logger = logging.getLogger(__name__)

Scorer = Callable[[str, str, str, str], float]


@dataclass(slots=True)
class Cluster:
    """Transient grouping produced by one clustering pass."""

    members: list[ClusterCandidate]
    keywords: list[str] = field(default_factory=list)
    confidence: float = 0.0
    phonetic: bool = False

    @property
    def seed(self) -> ClusterCandidate:
        return self.members[0]

    @property
    def addresses(self) -> list[str]:
        return [m.address for m in self.members]

    def __len__(self) -> int:
        return len(self.members)


def rank_keywords(members: Iterable[ClusterCandidate]) -> list[str]:
    """Keywords by number of members carrying them, first-seen order on ties."""

    counts: dict[str, int] = {}
    first_seen: dict[str, int] = {}
    for member in members:
        for word in similarity.extract_keywords(member.name, member.symbol):
            if word not in first_seen:
                first_seen[word] = len(first_seen)
            counts[word] = counts.get(word, 0) + 1
    return sorted(counts, key=lambda word: (-counts[word], first_seen[word]))


class ClusterBuilder:
    """Group a batch of tokens by similarity to a seed token.

    Tokens are visited in arrival order. Each token not yet consumed seeds a
    cluster that takes every later unconsumed token scoring at least the
    threshold against the seed. Clusters smaller than ``min_size`` are
    dropped whole; their tokens stay consumed for the rest of the pass.
    """

    def __init__(
        self,
        *,
        literal_threshold: float = 0.55,
        phonetic_threshold: float = 0.60,
        min_size: int = 3,
        scorer: Scorer = similarity.score,
    ) -> None:
        if min_size < 1:
            raise ValueError("min_size must be at least 1")
        self.literal_threshold = float(literal_threshold)
        self.phonetic_threshold = float(phonetic_threshold)
        self.min_size = int(min_size)
        self._score = scorer

    def threshold_for(self, seed: ClusterCandidate, other: ClusterCandidate) -> float:
        if similarity.uses_phonetic_path(seed.name, other.name):
            return self.phonetic_threshold
        return self.literal_threshold

    def build(self, candidates: Sequence[ClusterCandidate]) -> list[Cluster]:
        unique: list[ClusterCandidate] = []
        seen: set[str] = set()
        for candidate in candidates:
            if candidate.address in seen:
                continue
            seen.add(candidate.address)
            unique.append(candidate)

        consumed = [False] * len(unique)
        clusters: list[Cluster] = []
        for i, seed in enumerate(unique):
            if consumed[i]:
                continue
            consumed[i] = True
            members = [seed]
            scores = [1.0]
            phonetic = False
            for j in range(i + 1, len(unique)):
                if consumed[j]:
                    continue
                other = unique[j]
                value = self._score(seed.name, seed.symbol, other.name, other.symbol)
                if value >= self.threshold_for(seed, other):
                    consumed[j] = True
                    members.append(other)
                    scores.append(value)
                    phonetic = phonetic or similarity.uses_phonetic_path(seed.name, other.name)
            if len(members) < self.min_size:
                if len(members) > 1:
                    logger.debug(
                        "Dropping cluster seeded by %s: %d member(s) < %d",
                        seed.symbol or seed.address,
                        len(members),
                        self.min_size,
                    )
                continue
            clusters.append(
                Cluster(
                    members=members,
                    keywords=rank_keywords(members),
                    confidence=sum(scores) / len(scores),
                    phonetic=phonetic,
                )
            )
        logger.debug(
            "Clustered %d token(s) into %d cluster(s)", len(unique), len(clusters)
        )
        return clusters


__all__ = ["Cluster", "ClusterBuilder", "rank_keywords"]
