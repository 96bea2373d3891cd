"""
Multi-seed recommendation.

Hybrid mode blends several seed movies a user picked together; personalized
mode derives its seeds from a rated watch history. Both run the single-seed
pipeline once per seed, concurrently, and merge the ranked lists in memory.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import numpy as np

from .catalog import MovieSummary, TMDBCatalog
from .config import (
    MAX_SEEDS,
    MAX_RESULTS,
    SCORE_CAP,
    HYBRID_POSITION_DECAY,
    HYBRID_JITTER,
    DEFAULT_RATING,
    RATING_SCALE,
    REPEAT_DAMPING,
)
from .recommender import Recommendation, SimilarityRecommender
from .weights import ScoringWeights

logger = logging.getLogger(__name__)


@dataclass
class SeedWeight:
    """A watch-history movie promoted to seed, with its normalized rating."""

    movie_id: int
    weight: float  # rating / 10


@dataclass
class _MergedCandidate:
    movie: MovieSummary
    source: str
    total: float = 0.0
    occurrences: int = 0
    reasons: list[str] = field(default_factory=list)
    seed_ids: list[int] = field(default_factory=list)

    def absorb(self, rec: Recommendation, seed_id: int) -> None:
        for reason in rec.reasons:
            if reason not in self.reasons:
                self.reasons.append(reason)
        if seed_id not in self.seed_ids:
            self.seed_ids.append(seed_id)


def _unique(ids: list[int]) -> list[int]:
    return list(dict.fromkeys(ids))


def _position_factor(position: int, length: int) -> float:
    """1.0 at the head of a seed's list, falling linearly toward 0.0 at the tail."""
    return 1 - position / length if length else 1.0


class HybridRecommender:
    """
    Combine single-seed rankings across several seeds.

    Seed pipelines share no mutable state: each produces its own ranked
    list and only the final merge walks them together.
    """

    def __init__(self, recommender: SimilarityRecommender, rng: np.random.Generator | None = None):
        self.recommender = recommender
        self.rng = rng if rng is not None else recommender.rng

    async def _run_seeds(
        self,
        seed_ids: list[int],
        weight_sets: list[ScoringWeights | None],
    ) -> list[list[Recommendation]]:
        """Run the single-seed pipeline for every seed concurrently."""
        results = await asyncio.gather(
            *(
                self.recommender.get_similar_movies(seed_id, weights=weights)
                for seed_id, weights in zip(seed_ids, weight_sets)
            ),
            return_exceptions=True,
        )

        runs: list[list[Recommendation]] = []
        for seed_id, result in zip(seed_ids, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(f"Seed {seed_id} pipeline failed: {type(result).__name__}: {result}")
                runs.append([])
                continue
            if not result:
                logger.warning(f"Seed {seed_id} produced no recommendations")
            runs.append(result)
        return runs

    def _jitter_sort(self, recs: list[Recommendation]) -> list[Recommendation]:
        """Sort by score with a bounded multiplicative jitter (key drawn once per item)."""
        return sorted(
            recs,
            key=lambda r: r.score * self.rng.uniform(1 - HYBRID_JITTER, 1 + HYBRID_JITTER),
            reverse=True,
        )

    async def get_hybrid_recommendations(
        self,
        seed_ids: list[int],
        limit: int = MAX_RESULTS,
    ) -> list[Recommendation]:
        """
        Recommend movies that fit a set of seed movies.

        Args:
            seed_ids: Seed movie ids; duplicates are collapsed and only the
                first MAX_SEEDS are used
            limit: Maximum number of results

        A single seed short-circuits to the single-seed pipeline.
        Movies found by several seeds are rewarded by occurrence count.
        """
        seeds = _unique(seed_ids)
        if len(seeds) > MAX_SEEDS:
            logger.info(f"Using the first {MAX_SEEDS} of {len(seeds)} seeds")
            seeds = seeds[:MAX_SEEDS]

        if not seeds:
            return []
        if len(seeds) == 1:
            recs = await self.recommender.get_similar_movies(seeds[0])
            return recs[:limit]

        runs = await self._run_seeds(seeds, [None] * len(seeds))
        excluded = set(seeds)

        merged: dict[int, _MergedCandidate] = {}
        for seed_id, recs in zip(seeds, runs):
            length = len(recs)
            for position, rec in enumerate(recs):
                if rec.id in excluded:
                    continue
                entry = merged.get(rec.id)
                if entry is None:
                    entry = merged[rec.id] = _MergedCandidate(movie=rec.movie, source=rec.source)
                entry.total += rec.score * (1 - (position / length) * HYBRID_POSITION_DECAY)
                entry.occurrences += 1
                entry.absorb(rec, seed_id)

        seed_count = len(seeds)
        results = [
            Recommendation(
                movie=entry.movie,
                score=min(
                    (entry.total / entry.occurrences) * (1 + entry.occurrences / seed_count),
                    SCORE_CAP,
                ),
                reasons=entry.reasons,
                source=entry.source,
                seed_ids=entry.seed_ids,
            )
            for entry in merged.values()
        ]

        logger.info(f"Hybrid: {len(results)} candidates merged from {seed_count} seeds")
        return self._jitter_sort(results)[:limit]

    @staticmethod
    def select_seeds(watch_history: list[int], ratings: dict[int, float] | None = None) -> list[SeedWeight]:
        """Highest-rated history entries become seeds; unrated movies count as DEFAULT_RATING."""
        ratings = ratings or {}
        weighted = []
        for movie_id in _unique(watch_history):
            rating = ratings.get(movie_id, DEFAULT_RATING)
            rating = max(0.0, min(RATING_SCALE, float(rating)))
            weighted.append(SeedWeight(movie_id=movie_id, weight=rating / RATING_SCALE))

        # Stable sort keeps history order among equal ratings
        weighted.sort(key=lambda s: -s.weight)
        return weighted[:MAX_SEEDS]

    async def get_personalized_recommendations(
        self,
        watch_history: list[int],
        ratings: dict[int, float] | None = None,
        limit: int = MAX_RESULTS,
    ) -> list[Recommendation]:
        """
        Recommend from a rated watch history.

        Each seed's director, genre and cast weights are scaled by its
        normalized rating, so well-liked films steer the results more.
        Movies reached from several seeds stack with damping. Anything
        already in the history is excluded.
        """
        seeds = self.select_seeds(watch_history, ratings)
        if not seeds:
            return []

        base_weights = self.recommender.weights
        runs = await self._run_seeds(
            [seed.movie_id for seed in seeds],
            [base_weights.scaled(seed.weight) for seed in seeds],
        )
        watched = set(watch_history)

        merged: dict[int, _MergedCandidate] = {}
        for seed, recs in zip(seeds, runs):
            length = len(recs)
            for position, rec in enumerate(recs):
                if rec.id in watched:
                    continue
                factor = 0.5 + 0.5 * _position_factor(position, length)
                contribution = min(rec.score * seed.weight * factor, SCORE_CAP)

                entry = merged.get(rec.id)
                if entry is None:
                    entry = merged[rec.id] = _MergedCandidate(movie=rec.movie, source="personalized")
                    entry.total = contribution
                else:
                    entry.total += REPEAT_DAMPING * contribution
                entry.occurrences += 1
                entry.absorb(rec, seed.movie_id)

        results = [
            Recommendation(
                movie=entry.movie,
                score=min(entry.total, SCORE_CAP),
                reasons=entry.reasons,
                source=entry.source,
                seed_ids=entry.seed_ids,
            )
            for entry in merged.values()
        ]

        logger.info(f"Personalized: {len(results)} candidates from {len(seeds)} seeds")
        return self._jitter_sort(results)[:limit]


async def get_hybrid_recommendations(
    seed_ids: list[int],
    weights: ScoringWeights | None = None,
    rng: np.random.Generator | None = None,
) -> list[Recommendation]:
    """High-level convenience function: hybrid recommendations over TMDB."""
    async with TMDBCatalog() as catalog:
        hybrid = HybridRecommender(SimilarityRecommender(catalog, weights=weights, rng=rng))
        return await hybrid.get_hybrid_recommendations(seed_ids)


async def get_personalized_recommendations(
    watch_history: list[int],
    ratings: dict[int, float] | None = None,
    weights: ScoringWeights | None = None,
    rng: np.random.Generator | None = None,
) -> list[Recommendation]:
    """High-level convenience function: personalized recommendations over TMDB."""
    async with TMDBCatalog() as catalog:
        hybrid = HybridRecommender(SimilarityRecommender(catalog, weights=weights, rng=rng))
        return await hybrid.get_personalized_recommendations(watch_history, ratings)
