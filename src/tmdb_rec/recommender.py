from dataclasses import dataclass, field, replace
import asyncio
import logging
import math
from datetime import date
from typing import Iterable

import numpy as np

from .catalog import CatalogClient, MovieSummary, TMDBCatalog
from .signals import DEFAULT_SIGNALS, Contribution, Signal, SignalContext, run_signal
from .weights import ScoringWeights
from .config import (
    SCORE_CAP,
    MULTI_MATCH_BONUS,
    SMOOTHING_FACTOR,
    SMOOTHING_NOISE,
    VOTE_COUNT_DEFAULT,
    MOOD_KEYWORDS,
    NEW_RELEASE_YEARS,
    NEW_RELEASE_BONUS,
    REASON_NEW_RELEASE,
    ENRICH_TOP_N,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Preferences:
    """Caller preferences for a single-seed run."""

    prefer_new_releases: bool = False
    prefer_same_language: bool = False
    mood_filter: str | None = None
    weight_director: float | None = None
    weight_genre: float | None = None
    weight_cast: float | None = None
    enrich_details: bool = False

    def __post_init__(self) -> None:
        if self.mood_filter is not None and self.mood_filter not in MOOD_KEYWORDS:
            raise ValueError(
                f"Unknown mood '{self.mood_filter}' (expected one of {', '.join(MOOD_KEYWORDS)})"
            )


@dataclass
class Candidate:
    """A movie accumulating score and reasons during one aggregation run."""

    movie: MovieSummary
    similarity_score: float
    match_reasons: list[str]
    source: str  # set on first insert, never overwritten

    @property
    def id(self) -> int:
        return self.movie.id


@dataclass
class Recommendation:
    movie: MovieSummary
    score: float
    reasons: list[str]
    source: str
    seed_ids: list[int] = field(default_factory=list)
    raw_score: float | None = None  # capped score before smoothing (single-seed runs)

    @property
    def id(self) -> int:
        return self.movie.id

    @property
    def title(self) -> str:
        return self.movie.title

    @property
    def year(self) -> int | None:
        return self.movie.year


class CandidatePool:
    """
    Keyed merge of signal contributions: movie id -> Candidate.

    The first contribution for an id inserts a candidate with the base score
    and fixes its source tag. Later contributions append their reason and add
    their increment, unless the exact reason label is already present, in
    which case they are ignored.
    """

    def __init__(self, exclude: Iterable[int] = ()):
        self.candidates: dict[int, Candidate] = {}
        self.exclude = set(exclude)

    def add(self, contribution: Contribution) -> None:
        movie_id = contribution.movie.id
        if movie_id in self.exclude:
            return

        candidate = self.candidates.get(movie_id)
        if candidate is None:
            self.candidates[movie_id] = Candidate(
                movie=contribution.movie,
                similarity_score=contribution.base,
                match_reasons=[contribution.label],
                source=contribution.source,
            )
            return

        if contribution.label in candidate.match_reasons:
            return
        candidate.match_reasons.append(contribution.label)
        candidate.similarity_score += contribution.increment

    def extend(self, contributions: Iterable[Contribution]) -> None:
        for contribution in contributions:
            self.add(contribution)

    def boost(self, movie_id: int, label: str, amount: float) -> bool:
        """Add a reason and score to an existing candidate; never inserts."""
        candidate = self.candidates.get(movie_id)
        if candidate is None or label in candidate.match_reasons:
            return False
        candidate.match_reasons.append(label)
        candidate.similarity_score += amount
        return True

    def get(self, movie_id: int) -> Candidate | None:
        return self.candidates.get(movie_id)

    def __contains__(self, movie_id: int) -> bool:
        return movie_id in self.candidates

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self):
        return iter(self.candidates.values())


def multi_match_bonus(reason_count: int, weights: ScoringWeights) -> float:
    """Extra score for candidates that several independent signals agree on."""
    if reason_count <= 1:
        return 0.0
    return (reason_count - 1) * MULTI_MATCH_BONUS * weights.combined_bonus


def capped_score(candidate: Candidate, weights: ScoringWeights) -> float:
    """Similarity plus multi-match bonus, never above SCORE_CAP."""
    bonus = multi_match_bonus(len(candidate.match_reasons), weights)
    return min(candidate.similarity_score + bonus, SCORE_CAP)


def smooth_score(score: float, rng: np.random.Generator) -> int:
    """
    Compress the score and add bounded noise so equal scores do not line up
    mechanically. Rounds half up.
    """
    noisy = score * SMOOTHING_FACTOR + rng.uniform(0, SMOOTHING_NOISE)
    return max(0, math.floor(noisy + 0.5))


def quality_tiebreak(movie: MovieSummary) -> float:
    """Quality-weighted popularity used to order equal final scores."""
    votes = movie.vote_count or VOTE_COUNT_DEFAULT
    return movie.vote_average * math.log10(votes) * (movie.popularity or 1)


def finalize(
    pool: CandidatePool,
    weights: ScoringWeights,
    rng: np.random.Generator,
    seed_ids: list[int] | None = None,
) -> list[Recommendation]:
    """Score every candidate and return them ranked best first."""
    recs = []
    for candidate in pool:
        raw = capped_score(candidate, weights)
        recs.append(
            Recommendation(
                movie=candidate.movie,
                score=smooth_score(raw, rng),
                reasons=list(candidate.match_reasons),
                source=candidate.source,
                seed_ids=list(seed_ids or []),
                raw_score=raw,
            )
        )

    recs.sort(key=lambda r: (-r.score, -quality_tiebreak(r.movie)))
    return recs


class SimilarityRecommender:
    """
    Multi-signal "more like this" recommendations for one seed movie.

    Every signal runs concurrently against the catalog; their contributions
    are folded into a CandidatePool in registry order so attribution and
    reason order stay deterministic.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        weights: ScoringWeights | None = None,
        signals: list[Signal] | None = None,
        rng: np.random.Generator | None = None,
        today: date | None = None,
    ):
        self.catalog = catalog
        self.weights = weights or ScoringWeights()
        self.signals = list(signals) if signals is not None else list(DEFAULT_SIGNALS)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.today = today

    def effective_weights(
        self,
        preferences: Preferences | None = None,
        weights: ScoringWeights | None = None,
    ) -> ScoringWeights:
        return (weights or self.weights).with_preferences(preferences)

    async def build_pool(
        self,
        seed_id: int,
        preferences: Preferences | None = None,
        weights: ScoringWeights | None = None,
    ) -> CandidatePool | None:
        """
        Run every signal for ``seed_id`` and merge the results.

        Returns None when the seed's own detail cannot be fetched; nothing
        downstream can run without it.
        """
        weights = self.effective_weights(preferences, weights)

        try:
            detail = await self.catalog.get_movie_detail(seed_id)
        except Exception as exc:
            logger.warning(f"Could not load seed movie {seed_id}: {type(exc).__name__}: {exc}")
            return None

        ctx = SignalContext(
            seed_id=seed_id,
            weights=weights,
            mood=preferences.mood_filter if preferences else None,
        )
        results = await asyncio.gather(
            *(run_signal(signal, self.catalog, detail, ctx) for signal in self.signals)
        )

        pool = CandidatePool(exclude={seed_id})
        for contributions in results:
            pool.extend(contributions)

        if preferences and preferences.prefer_new_releases:
            self._boost_new_releases(pool, weights)

        return pool

    def _boost_new_releases(self, pool: CandidatePool, weights: ScoringWeights) -> None:
        current_year = (self.today or date.today()).year
        boosted = 0
        for candidate in list(pool):
            year = candidate.movie.year
            if year is not None and year >= current_year - NEW_RELEASE_YEARS:
                if pool.boost(candidate.id, REASON_NEW_RELEASE, NEW_RELEASE_BONUS * weights.era):
                    boosted += 1
        logger.debug(f"New-release preference boosted {boosted} candidates")

    async def get_similar_movies(
        self,
        seed_id: int,
        preferences: Preferences | None = None,
        weights: ScoringWeights | None = None,
    ) -> list[Recommendation]:
        """Ranked recommendations for one seed; [] when the seed cannot be loaded."""
        pool = await self.build_pool(seed_id, preferences, weights)
        if pool is None:
            return []

        recs = finalize(pool, self.effective_weights(preferences, weights), self.rng, seed_ids=[seed_id])
        logger.info(f"Movie {seed_id}: {len(recs)} candidates from {len(self.signals)} signals")

        if preferences and preferences.enrich_details:
            await self.enrich(recs)
        return recs

    async def enrich(self, recs: list[Recommendation], top_n: int = ENRICH_TOP_N) -> list[Recommendation]:
        """
        Fill genres, runtime, tagline, backdrop and director for the top
        results. A failed lookup keeps the summary the signal provided.
        """
        head = recs[:top_n]
        details = await asyncio.gather(
            *(self.catalog.get_movie_detail(rec.id) for rec in head),
            return_exceptions=True,
        )

        failed = 0
        for rec, detail in zip(head, details):
            if isinstance(detail, BaseException):
                if isinstance(detail, asyncio.CancelledError):
                    raise detail
                logger.debug(f"Enrichment failed for movie {rec.id}: {detail}")
                failed += 1
                continue
            full = detail.movie
            rec.movie = replace(
                rec.movie,
                genres=full.genres or rec.movie.genres,
                runtime=full.runtime if full.runtime is not None else rec.movie.runtime,
                tagline=full.tagline or rec.movie.tagline,
                backdrop_path=full.backdrop_path or rec.movie.backdrop_path,
                director=full.director or rec.movie.director,
            )

        if failed:
            logger.warning(f"Enrichment: {len(head) - failed}/{len(head)} details fetched")
        return recs


async def get_similar_movies(
    seed_id: int,
    preferences: Preferences | None = None,
    weights: ScoringWeights | None = None,
    rng: np.random.Generator | None = None,
) -> list[Recommendation]:
    """High-level entry point: open a TMDB session and rank movies like ``seed_id``."""
    async with TMDBCatalog() as catalog:
        recommender = SimilarityRecommender(catalog, weights=weights, rng=rng)
        return await recommender.get_similar_movies(seed_id, preferences)
