"""
Similarity signals.

Each signal looks at the seed's detail record (and may issue further catalog
lookups) and emits Contributions: a candidate movie, the score it earns when
first seen, the increment it earns when another signal already found it,
and the reason label shown to the user. Signals never touch the candidate
pool themselves, so they can be added or removed freely.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

from .catalog import CatalogClient, DiscoverFilters, MovieDetail, MovieSummary
from .config import (
    SIGNAL_SCORES,
    REASON_FRANCHISE,
    REASON_DIRECTOR,
    REASON_CAST,
    REASON_KEYWORD,
    REASON_GENRE,
    REASON_RECOMMEND,
    REASON_ERA,
    REASON_VISUAL,
    REASON_REGION,
    REASON_MOOD,
    REASON_ACCLAIMED,
    MAX_CAST_CONSIDERED,
    LEAD_ROLE_MAX_ORDER,
    MAX_ROLES_PER_ACTOR,
    MAX_KEYWORDS_CONSIDERED,
    MAX_MOVIES_PER_KEYWORD,
    GENERIC_KEYWORDS,
    GENRE_RESULTS,
    ERA_WINDOW_YEARS,
    ERA_MIN_VOTE_COUNT,
    ERA_RESULTS,
    VISUAL_RESULTS,
    REGION_RESULTS,
    MOOD_KEYWORDS,
    MOOD_RESULTS,
    ACCLAIMED_MIN_VOTE_COUNT,
    ACCLAIMED_MIN_RATING,
    ACCLAIMED_RESULTS,
)
from .weights import ScoringWeights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contribution:
    movie: MovieSummary
    base: float        # score when the candidate is first inserted
    increment: float   # score added when the candidate already exists
    label: str
    source: str


@dataclass(frozen=True)
class SignalContext:
    seed_id: int
    weights: ScoringWeights
    mood: str | None = None


Extractor = Callable[[CatalogClient, MovieDetail, SignalContext], Awaitable[list[Contribution]]]


@dataclass(frozen=True)
class Signal:
    """A named extractor; ``name`` doubles as the source tag of what it inserts."""

    name: str
    extract: Extractor


def _contribute(
    movies: Iterable[MovieSummary],
    ctx: SignalContext,
    source: str,
    label: str,
    scale: float = 1.0,
    increment_scale: float | None = None,
    limit: int | None = None,
) -> list[Contribution]:
    """Turn movies into contributions, dropping the seed before applying ``limit``."""
    base, increment = SIGNAL_SCORES[source]
    increment_scale = scale if increment_scale is None else increment_scale

    contributions: list[Contribution] = []
    for movie in movies:
        if movie.id == ctx.seed_id:
            continue
        contributions.append(
            Contribution(
                movie=movie,
                base=base * scale,
                increment=increment * increment_scale,
                label=label,
                source=source,
            )
        )
        if limit is not None and len(contributions) >= limit:
            break
    return contributions


async def _gather_tolerant(signal: str, lookups: list[tuple[str, Awaitable]]) -> list[tuple[str, object]]:
    """
    Run sub-lookups concurrently; a failed one is logged and left out.

    Returns (label, result) pairs for the lookups that succeeded, in input order.
    """
    results = await asyncio.gather(*(lookup for _, lookup in lookups), return_exceptions=True)

    succeeded: list[tuple[str, object]] = []
    for (label, _), result in zip(lookups, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(f"{signal}: lookup for {label} failed: {type(result).__name__}: {result}")
            continue
        succeeded.append((label, result))
    return succeeded


async def franchise_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if detail.collection_id is None:
        return []
    movies = await catalog.get_collection_movies(detail.collection_id)
    return _contribute(movies, ctx, "franchise", REASON_FRANCHISE)


async def director_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if not detail.directors:
        return []

    w = ctx.weights
    credits = await _gather_tolerant(
        "director",
        [(director.name or str(director.id), catalog.get_person_credits(director.id)) for director in detail.directors],
    )
    contributions: list[Contribution] = []
    for _, person_credits in credits:
        contributions.extend(
            _contribute(
                person_credits.directed,
                ctx,
                "director",
                REASON_DIRECTOR,
                scale=w.director,
                increment_scale=w.director * w.combined_bonus,
            )
        )
    return contributions


async def cast_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    """Lead roles of the top-billed actors, one reason label per actor."""
    actors = detail.cast[:MAX_CAST_CONSIDERED]
    if not actors:
        return []

    w = ctx.weights
    credits = await _gather_tolerant(
        "cast",
        [(actor.name or str(actor.id), catalog.get_person_credits(actor.id)) for actor in actors],
    )

    contributions: list[Contribution] = []
    for name, person_credits in credits:
        lead_roles = [
            credit.movie
            for credit in person_credits.acted
            if credit.order is not None and credit.order < LEAD_ROLE_MAX_ORDER
        ]
        contributions.extend(
            _contribute(
                lead_roles,
                ctx,
                "cast",
                REASON_CAST.format(name),
                scale=w.cast,
                increment_scale=w.cast * w.combined_bonus,
                limit=MAX_ROLES_PER_ACTOR,
            )
        )
    return contributions


async def keyword_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    significant = [k for k in detail.keywords if k.name.lower() not in GENERIC_KEYWORDS]
    significant = significant[:MAX_KEYWORDS_CONSIDERED]
    if not significant:
        return []

    results = await _gather_tolerant(
        "keyword",
        [(keyword.name or str(keyword.id), catalog.get_keyword_movies(keyword.id)) for keyword in significant],
    )
    contributions: list[Contribution] = []
    for _, movies in results:
        best_rated = sorted(movies, key=lambda m: m.vote_average, reverse=True)
        contributions.extend(
            _contribute(best_rated, ctx, "keyword", REASON_KEYWORD, limit=MAX_MOVIES_PER_KEYWORD)
        )
    return contributions


async def genre_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if not detail.genre_ids:
        return []
    movies = await catalog.discover_movies(
        DiscoverFilters(genre_ids=tuple(detail.genre_ids), sort_by="popularity.desc")
    )
    return _contribute(movies, ctx, "genre", REASON_GENRE, scale=ctx.weights.genre, limit=GENRE_RESULTS)


async def recommend_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    # Overlap between the two lists is folded by the pool's label dedup
    return _contribute(detail.recommendations + detail.similar, ctx, "recommend", REASON_RECOMMEND)


async def era_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    year = detail.year
    if year is None:
        return []
    movies = await catalog.discover_movies(
        DiscoverFilters(
            release_date_gte=f"{year - ERA_WINDOW_YEARS}-01-01",
            release_date_lte=f"{year + ERA_WINDOW_YEARS}-12-31",
            min_vote_count=ERA_MIN_VOTE_COUNT,
            sort_by="vote_average.desc",
        )
    )
    return _contribute(movies, ctx, "era", REASON_ERA, limit=ERA_RESULTS)


async def visual_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    # TMDB has no visual-similarity endpoint; its "similar" list is the proxy
    return _contribute(detail.similar, ctx, "visual", REASON_VISUAL, limit=VISUAL_RESULTS)


async def region_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if not detail.original_language:
        return []
    movies = await catalog.discover_movies(
        DiscoverFilters(
            original_language=detail.original_language,
            region=detail.production_country,
        )
    )
    return _contribute(movies, ctx, "region", REASON_REGION, scale=ctx.weights.language, limit=REGION_RESULTS)


async def mood_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if not ctx.mood:
        return []

    keyword_texts = MOOD_KEYWORDS.get(ctx.mood)
    if not keyword_texts:
        logger.warning(f"Unknown mood '{ctx.mood}', skipping mood signal")
        return []

    resolved = await _gather_tolerant(
        "mood", [(text, catalog.resolve_keyword_id(text)) for text in keyword_texts]
    )
    keyword_ids = tuple(kid for _, kid in resolved if kid is not None)
    if not keyword_ids:
        logger.info(f"No keyword ids resolved for mood '{ctx.mood}'; mood signal contributes nothing")
        return []

    movies = await catalog.discover_movies(
        DiscoverFilters(keyword_ids=keyword_ids, sort_by="popularity.desc")
    )
    label = REASON_MOOD.format(ctx.mood.capitalize())
    return _contribute(movies, ctx, "mood", label, limit=MOOD_RESULTS)


async def acclaimed_signal(catalog: CatalogClient, detail: MovieDetail, ctx: SignalContext) -> list[Contribution]:
    if not detail.genre_ids:
        return []
    movies = await catalog.discover_movies(
        DiscoverFilters(
            genre_ids=tuple(detail.genre_ids),
            min_vote_count=ACCLAIMED_MIN_VOTE_COUNT,
            min_rating=ACCLAIMED_MIN_RATING,
            sort_by="vote_average.desc",
        )
    )
    return _contribute(movies, ctx, "acclaimed", REASON_ACCLAIMED, limit=ACCLAIMED_RESULTS)


# Franchise goes first: it is the strongest signal and everything after it
# increments rather than inserts when a film is already in the pool.
DEFAULT_SIGNALS: list[Signal] = [
    Signal("franchise", franchise_signal),
    Signal("director", director_signal),
    Signal("cast", cast_signal),
    Signal("keyword", keyword_signal),
    Signal("genre", genre_signal),
    Signal("recommend", recommend_signal),
    Signal("era", era_signal),
    Signal("visual", visual_signal),
    Signal("region", region_signal),
    Signal("mood", mood_signal),
    Signal("acclaimed", acclaimed_signal),
]


async def run_signal(
    signal: Signal,
    catalog: CatalogClient,
    detail: MovieDetail,
    ctx: SignalContext,
) -> list[Contribution]:
    """Run one signal; any failure degrades it to no contributions."""
    try:
        contributions = await signal.extract(catalog, detail, ctx)
    except Exception as exc:
        logger.warning(
            f"Signal '{signal.name}' failed for movie {ctx.seed_id}: {type(exc).__name__}: {exc}"
        )
        return []

    logger.debug(f"Signal '{signal.name}' produced {len(contributions)} contributions for movie {ctx.seed_id}")
    return contributions
