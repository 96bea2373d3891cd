import argparse
import asyncio
import json
import logging
from pathlib import Path

import numpy as np

from .catalog import CatalogError, Genre, MovieSummary, TMDBCatalog
from .config import DEFAULT_MAX_CONCURRENT, MAX_RESULTS, MOOD_KEYWORDS, SEARCH_RESULTS
from .hybrid import HybridRecommender
from .recommender import Preferences, Recommendation, SimilarityRecommender
from .weights import ScoringWeights, load_weights

logger = logging.getLogger(__name__)


def _parse_movie_id(value: str) -> int:
    """
    Validate a TMDB movie id.
    Raises ValueError for anything that is not a positive integer.
    """
    try:
        movie_id = int(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid movie id: {value}") from None
    if movie_id <= 0:
        raise ValueError(f"Invalid movie id: {value}")
    return movie_id


def _load_history(path: str) -> tuple[list[int], dict[int, float]]:
    """
    Read a watch history file of the form
    {"watch_history": [ids], "ratings": {"id": rating}}.

    Unparsable ratings are ignored with a warning.
    """
    payload = json.loads(Path(path).read_text())
    if not isinstance(payload, dict):
        raise ValueError("History file must contain a JSON object")

    raw_history = payload.get("watch_history") or []
    raw_ratings = payload.get("ratings") or {}
    if not isinstance(raw_history, list):
        raise ValueError('"watch_history" must be a list of movie ids')
    if not isinstance(raw_ratings, dict):
        raise ValueError('"ratings" must be an object mapping movie ids to ratings')

    history = [_parse_movie_id(v) for v in raw_history]

    ratings: dict[int, float] = {}
    for key, value in raw_ratings.items():
        try:
            ratings[_parse_movie_id(key)] = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring rating %s=%r (expected id: number)", key, value)
    return history, ratings


def _make_rng(args: argparse.Namespace) -> np.random.Generator:
    return np.random.default_rng(getattr(args, "seed", None))


def _weights_from_args(args: argparse.Namespace) -> ScoringWeights:
    return load_weights(getattr(args, "weights", None))


def _movie_to_dict(movie: MovieSummary) -> dict:
    return {
        "id": movie.id,
        "title": movie.title,
        "year": movie.year,
        "vote_average": movie.vote_average,
        "genres": [g.name for g in movie.genres],
        "director": movie.director,
        "url": f"https://www.themoviedb.org/movie/{movie.id}",
    }


def _recommendation_to_dict(rec: Recommendation) -> dict:
    return {
        **_movie_to_dict(rec.movie),
        "score": round(rec.score, 1),
        "source": rec.source,
        "reasons": rec.reasons,
        "seed_ids": rec.seed_ids,
    }


def _output_movies(movies: list[MovieSummary], args: argparse.Namespace, empty_message: str) -> None:
    movies = movies[: args.limit]

    if args.format == "json":
        print(json.dumps([_movie_to_dict(m) for m in movies], indent=2))
        return

    if not movies:
        logger.info(empty_message)
        return

    for movie in movies:
        year = movie.year if movie.year is not None else "?"
        line = f"{movie.id:>8}  {movie.title} ({year})  ★ {movie.vote_average:.1f}"
        if movie.director:
            line += f"  dir. {movie.director}"
        logger.info(line)


def _output_recommendations(recs: list[Recommendation], args: argparse.Namespace, heading: str) -> None:
    recs = recs[: args.limit]

    if args.format == "json":
        print(json.dumps([_recommendation_to_dict(r) for r in recs], indent=2))
        return

    if not recs:
        logger.info("No recommendations found.")
        return

    logger.info(f"\n{heading}:")
    for i, rec in enumerate(recs, 1):
        year = rec.year if rec.year is not None else "?"
        logger.info(f"{i}. {rec.title} ({year}) - Score: {rec.score:.0f} [{rec.source}]")
        logger.info(f"   Why: {', '.join(rec.reasons[:4])}")


async def _similar_async(args: argparse.Namespace, seed_id: int, preferences: Preferences) -> list[Recommendation]:
    async with TMDBCatalog(max_concurrent=args.max_concurrent) as catalog:
        recommender = SimilarityRecommender(catalog, weights=_weights_from_args(args), rng=_make_rng(args))
        return await recommender.get_similar_movies(seed_id, preferences)


async def _hybrid_async(args: argparse.Namespace, seed_ids: list[int]) -> list[Recommendation]:
    async with TMDBCatalog(max_concurrent=args.max_concurrent) as catalog:
        recommender = SimilarityRecommender(catalog, weights=_weights_from_args(args), rng=_make_rng(args))
        return await HybridRecommender(recommender).get_hybrid_recommendations(seed_ids, limit=args.limit)


async def _personalized_async(
    args: argparse.Namespace,
    history: list[int],
    ratings: dict[int, float],
) -> list[Recommendation]:
    async with TMDBCatalog(max_concurrent=args.max_concurrent) as catalog:
        recommender = SimilarityRecommender(catalog, weights=_weights_from_args(args), rng=_make_rng(args))
        return await HybridRecommender(recommender).get_personalized_recommendations(
            history, ratings, limit=args.limit
        )


async def _search_async(args: argparse.Namespace) -> list[MovieSummary]:
    async with TMDBCatalog(max_concurrent=args.max_concurrent) as catalog:
        return await catalog.search_with_directors(args.query, limit=args.limit)


async def _genres_async(args: argparse.Namespace) -> list[Genre] | list[MovieSummary]:
    async with TMDBCatalog(max_concurrent=args.max_concurrent) as catalog:
        if args.genre_id is None:
            return await catalog.get_genres()
        return await catalog.get_movies_by_genre(args.genre_id)


def cmd_similar(args: argparse.Namespace) -> None:
    """Find movies similar to one seed movie."""
    try:
        seed_id = _parse_movie_id(args.movie_id)
    except ValueError as exc:
        logger.error(str(exc))
        return

    preferences = Preferences(
        prefer_new_releases=args.prefer_new,
        prefer_same_language=args.same_language,
        mood_filter=args.mood,
        weight_director=args.weight_director,
        weight_genre=args.weight_genre,
        weight_cast=args.weight_cast,
        enrich_details=args.details,
    )

    recs = asyncio.run(_similar_async(args, seed_id, preferences))
    _output_recommendations(recs, args, f"Movies similar to {seed_id}")


def cmd_hybrid(args: argparse.Namespace) -> None:
    """Recommend movies that fit several seed movies at once."""
    try:
        seed_ids = [_parse_movie_id(v) for v in args.movie_ids]
    except ValueError as exc:
        logger.error(str(exc))
        return

    recs = asyncio.run(_hybrid_async(args, seed_ids))
    _output_recommendations(recs, args, f"Movies for {', '.join(str(s) for s in seed_ids)}")


def cmd_personalized(args: argparse.Namespace) -> None:
    """Recommend movies from a rated watch history file."""
    try:
        history, ratings = _load_history(args.history)
    except (OSError, ValueError) as exc:
        logger.error(f"Could not read history file '{args.history}': {exc}")
        return

    if not history:
        logger.error("Watch history is empty; nothing to personalize from")
        return

    recs = asyncio.run(_personalized_async(args, history, ratings))
    _output_recommendations(recs, args, f"Recommended from {len(history)} watched movies")


def cmd_search(args: argparse.Namespace) -> None:
    """Look up movie ids by title or director name."""
    try:
        movies = asyncio.run(_search_async(args))
    except CatalogError as exc:
        logger.error(f"Search for '{args.query}' failed: {exc}")
        return
    _output_movies(movies, args, f"No movies found for '{args.query}'")


def cmd_genres(args: argparse.Namespace) -> None:
    """List genres, or the most popular movies of one genre."""
    try:
        results = asyncio.run(_genres_async(args))
    except CatalogError as exc:
        logger.error(f"Genre lookup failed: {exc}")
        return

    if args.genre_id is not None:
        _output_movies(results, args, f"No movies found for genre {args.genre_id}")
        return

    if args.format == "json":
        print(json.dumps([{"id": g.id, "name": g.name} for g in results], indent=2))
        return
    for genre in results:
        logger.info(f"{genre.id:>6}  {genre.name}")


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=20, help="Number of recommendations to show")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")


def main():
    parser = argparse.ArgumentParser(description="TMDB Multi-Signal Movie Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--seed", type=int, help="Fix the random source for reproducible ordering")
    parser.add_argument("--weights", help="JSON file with scoring weight overrides")
    parser.add_argument("--max-concurrent", type=int, default=DEFAULT_MAX_CONCURRENT,
                        help="Max concurrent catalog requests")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Similar command
    similar_parser = subparsers.add_parser("similar", help="Find movies similar to a seed movie")
    similar_parser.add_argument("movie_id", help="TMDB movie id")
    similar_parser.add_argument("--mood", choices=sorted(MOOD_KEYWORDS), help="Add the mood signal")
    similar_parser.add_argument("--prefer-new", action="store_true", help="Boost recent releases")
    similar_parser.add_argument("--same-language", action="store_true",
                                help="Boost films sharing the seed's language and region")
    similar_parser.add_argument("--weight-director", type=float, help="Override the director weight")
    similar_parser.add_argument("--weight-genre", type=float, help="Override the genre weight")
    similar_parser.add_argument("--weight-cast", type=float, help="Override the cast weight")
    similar_parser.add_argument("--details", action="store_true",
                                help="Fetch full details (genres, director) for the top results")
    _add_output_args(similar_parser)
    similar_parser.set_defaults(func=cmd_similar)

    # Hybrid command
    hybrid_parser = subparsers.add_parser("hybrid", help="Recommend from several seed movies")
    hybrid_parser.add_argument("movie_ids", nargs="+", help="TMDB movie ids (up to 5 are used)")
    _add_output_args(hybrid_parser)
    hybrid_parser.set_defaults(func=cmd_hybrid, limit=MAX_RESULTS)

    # Personalized command
    personalized_parser = subparsers.add_parser("personalized", help="Recommend from a rated watch history")
    personalized_parser.add_argument("history", help='JSON file: {"watch_history": [...], "ratings": {...}}')
    _add_output_args(personalized_parser)
    personalized_parser.set_defaults(func=cmd_personalized, limit=MAX_RESULTS)

    # Search command
    search_parser = subparsers.add_parser("search", help="Look up movie ids by title or director")
    search_parser.add_argument("query", help="Movie title or director name")
    _add_output_args(search_parser)
    search_parser.set_defaults(func=cmd_search, limit=SEARCH_RESULTS)

    # Genres command
    genres_parser = subparsers.add_parser("genres", help="List genres or a genre's popular movies")
    genres_parser.add_argument("genre_id", nargs="?", type=int, help="Genre id (omit to list genres)")
    _add_output_args(genres_parser)
    genres_parser.set_defaults(func=cmd_genres)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
