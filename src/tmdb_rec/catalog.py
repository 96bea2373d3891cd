import httpx
import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Protocol

from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    TMDB_LANGUAGE,
    HTTP_TIMEOUT,
    DEFAULT_MAX_CONCURRENT,
    CATALOG_HTTP2,
    MAX_HTTP_RETRIES,
    DEFAULT_RETRY_AFTER,
    RETRY_INITIAL_DELAY,
    RETRY_BACKOFF_FACTOR,
    SEARCH_RESULTS,
    SEARCH_MAX_PEOPLE,
)

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """A catalog lookup failed (HTTP error, missing record, bad payload)."""


@dataclass(frozen=True)
class Genre:
    id: int
    name: str = ""


@dataclass(frozen=True)
class MovieSummary:
    id: int
    title: str
    release_date: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    overview: str = ""
    popularity: float = 0.0
    genres: tuple[Genre, ...] = ()
    runtime: int | None = None
    tagline: str | None = None
    director: str | None = None

    @property
    def year(self) -> int | None:
        """Release year parsed from the ISO date, None when unknown."""
        head = (self.release_date or "")[:4]
        return int(head) if head.isdigit() else None


@dataclass(frozen=True)
class Person:
    id: int
    name: str
    order: int | None = None  # billing position for cast members


@dataclass(frozen=True)
class Keyword:
    id: int
    name: str


@dataclass
class MovieDetail:
    movie: MovieSummary
    directors: list[Person] = field(default_factory=list)
    cast: list[Person] = field(default_factory=list)  # ordered by billing
    keywords: list[Keyword] = field(default_factory=list)
    collection_id: int | None = None
    recommendations: list[MovieSummary] = field(default_factory=list)
    similar: list[MovieSummary] = field(default_factory=list)
    original_language: str | None = None
    production_country: str | None = None

    @property
    def id(self) -> int:
        return self.movie.id

    @property
    def year(self) -> int | None:
        return self.movie.year

    @property
    def genre_ids(self) -> list[int]:
        return [g.id for g in self.movie.genres]

    @property
    def recommended_ids(self) -> list[int]:
        return [m.id for m in self.recommendations]

    @property
    def similar_ids(self) -> list[int]:
        return [m.id for m in self.similar]


@dataclass(frozen=True)
class ActingCredit:
    movie: MovieSummary
    order: int | None


@dataclass
class PersonCredits:
    directed: list[MovieSummary] = field(default_factory=list)
    acted: list[ActingCredit] = field(default_factory=list)


@dataclass(frozen=True)
class DiscoverFilters:
    """Filters for the catalog's discovery endpoint."""

    genre_ids: tuple[int, ...] = ()
    keyword_ids: tuple[int, ...] = ()  # OR-combined
    release_date_gte: str | None = None
    release_date_lte: str | None = None
    original_language: str | None = None
    region: str | None = None
    min_vote_count: int | None = None
    min_rating: float | None = None
    sort_by: str = "popularity.desc"

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {"sort_by": self.sort_by}
        if self.genre_ids:
            params["with_genres"] = ",".join(str(g) for g in self.genre_ids)
        if self.keyword_ids:
            params["with_keywords"] = "|".join(str(k) for k in self.keyword_ids)
        if self.release_date_gte:
            params["primary_release_date.gte"] = self.release_date_gte
        if self.release_date_lte:
            params["primary_release_date.lte"] = self.release_date_lte
        if self.original_language:
            params["with_original_language"] = self.original_language
        if self.region:
            params["with_origin_country"] = self.region
        if self.min_vote_count is not None:
            params["vote_count.gte"] = str(self.min_vote_count)
        if self.min_rating is not None:
            params["vote_average.gte"] = str(self.min_rating)
        return params


class CatalogClient(Protocol):
    """Lookups the recommendation engine consumes."""

    async def get_movie_detail(self, movie_id: int) -> MovieDetail: ...

    async def get_collection_movies(self, collection_id: int) -> list[MovieSummary]: ...

    async def get_person_credits(self, person_id: int) -> PersonCredits: ...

    async def get_keyword_movies(self, keyword_id: int) -> list[MovieSummary]: ...

    async def discover_movies(self, filters: DiscoverFilters) -> list[MovieSummary]: ...

    async def resolve_keyword_id(self, text: str) -> int | None: ...

    async def search_movies(self, query: str) -> list[MovieSummary]: ...

    async def search_with_directors(self, query: str, limit: int = SEARCH_RESULTS) -> list[MovieSummary]: ...

    async def get_genres(self) -> list[Genre]: ...

    async def get_movies_by_genre(self, genre_id: int) -> list[MovieSummary]: ...


def parse_movie_summary(payload: dict) -> MovieSummary:
    """
    Build a MovieSummary from any TMDB movie payload (list item or detail).

    Missing numbers become 0 and missing strings become "".
    """
    genres = tuple(
        Genre(id=int(g["id"]), name=g.get("name") or "")
        for g in payload.get("genres") or []
        if isinstance(g, dict) and g.get("id") is not None
    )
    return MovieSummary(
        id=int(payload["id"]),
        title=payload.get("title") or payload.get("name") or "",
        release_date=payload.get("release_date") or "",
        poster_path=payload.get("poster_path"),
        backdrop_path=payload.get("backdrop_path"),
        vote_average=float(payload.get("vote_average") or 0.0),
        vote_count=int(payload.get("vote_count") or 0),
        overview=payload.get("overview") or "",
        popularity=float(payload.get("popularity") or 0.0),
        genres=genres,
        runtime=payload.get("runtime"),
        tagline=payload.get("tagline") or None,
    )


def _parse_results(payload: dict, key: str = "results") -> list[MovieSummary]:
    return [parse_movie_summary(item) for item in payload.get(key) or [] if item.get("id") is not None]


def parse_directors(credits: dict) -> list[Person]:
    """Directors from a credits payload's crew, in credit order, without repeats."""
    directors: list[Person] = []
    seen: set[int] = set()
    for member in credits.get("crew") or []:
        if member.get("job") != "Director" or member.get("id") in seen:
            continue
        seen.add(member["id"])
        directors.append(Person(id=int(member["id"]), name=member.get("name") or ""))
    return directors


def parse_movie_detail(payload: dict) -> MovieDetail:
    """Parse /movie/{id} with credits, keywords, similar and recommendations appended."""
    credits = payload.get("credits") or {}
    directors = parse_directors(credits)

    cast_rows = sorted(
        credits.get("cast") or [],
        key=lambda c: c.get("order") if c.get("order") is not None else 1_000_000,
    )
    cast = [
        Person(id=int(c["id"]), name=c.get("name") or "", order=c.get("order"))
        for c in cast_rows
        if c.get("id") is not None
    ]

    keywords = [
        Keyword(id=int(k["id"]), name=k.get("name") or "")
        for k in (payload.get("keywords") or {}).get("keywords") or []
        if k.get("id") is not None
    ]

    collection = payload.get("belongs_to_collection") or {}
    countries = payload.get("production_countries") or []
    production_country = countries[0].get("iso_3166_1") if countries else None
    if not production_country and payload.get("origin_country"):
        production_country = payload["origin_country"][0]

    movie = parse_movie_summary(payload)
    if directors:
        movie = replace(movie, director=directors[0].name)

    return MovieDetail(
        movie=movie,
        directors=directors,
        cast=cast,
        keywords=keywords,
        collection_id=collection.get("id"),
        recommendations=_parse_results(payload.get("recommendations") or {}),
        similar=_parse_results(payload.get("similar") or {}),
        original_language=payload.get("original_language") or None,
        production_country=production_country,
    )


def parse_person_credits(payload: dict) -> PersonCredits:
    """Split /person/{id}/movie_credits into directed films and acting roles."""
    directed: list[MovieSummary] = []
    seen: set[int] = set()
    for credit in payload.get("crew") or []:
        if credit.get("job") != "Director" or credit.get("id") in seen:
            continue
        seen.add(credit["id"])
        directed.append(parse_movie_summary(credit))

    acted = [
        ActingCredit(movie=parse_movie_summary(credit), order=credit.get("order"))
        for credit in payload.get("cast") or []
        if credit.get("id") is not None
    ]
    return PersonCredits(directed=directed, acted=acted)


def _parse_retry_after(value: str | None) -> float:
    try:
        return max(0.0, float(value)) if value is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


class TMDBCatalog:
    """Async TMDB client with bounded concurrency and coordinated rate limiting."""

    DETAIL_APPENDS = "credits,keywords,similar,recommendations"

    def __init__(
        self,
        api_key: str = TMDB_API_KEY,
        base_url: str = TMDB_BASE_URL,
        language: str = TMDB_LANGUAGE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.client = client
        self._owns_client = client is None
        # Coordinated rate limiting: when one task hits 429, all tasks pause
        self._rate_limit_event = asyncio.Event()
        self._rate_limit_event.set()  # Start in "not rate limited" state

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.api_key:
            logger.warning("TMDB_API_KEY is not set; catalog requests will likely be rejected")
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={"Accept": "application/json", "User-Agent": "tmdb-rec/1.0"},
                follow_redirects=True,
                timeout=HTTP_TIMEOUT,
                http2=CATALOG_HTTP2,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
        return False

    async def _get_json(self, path: str, params: dict | None = None) -> dict:
        """
        GET a catalog path and decode the JSON body.

        Timeouts are retried with exponential backoff, 429 pauses every
        in-flight request for Retry-After seconds. Anything else that goes
        wrong surfaces as CatalogError.
        """
        if not self.client:
            raise RuntimeError("TMDBCatalog must be used as an async context manager")

        query = {"api_key": self.api_key, "language": self.language}
        query.update({k: v for k, v in (params or {}).items() if v is not None})
        url = f"{self.base_url}{path}"

        async with self.semaphore:
            delay = RETRY_INITIAL_DELAY
            for attempt in range(MAX_HTTP_RETRIES):
                # Wait if globally rate limited by another task
                await self._rate_limit_event.wait()

                try:
                    resp = await self.client.get(url, params=query)

                    if resp.status_code == 404:
                        raise CatalogError(f"Not found: {path}")

                    if resp.status_code == 429:
                        retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                        logger.warning(
                            f"Rate limited on {path}, pausing ALL requests for {retry_after}s "
                            f"(attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                        )
                        self._rate_limit_event.clear()
                        await asyncio.sleep(retry_after)
                        self._rate_limit_event.set()
                        # Jitter prevents every paused task retrying at once
                        await asyncio.sleep(random.uniform(0, RETRY_INITIAL_DELAY))
                        continue

                    resp.raise_for_status()
                    return resp.json()

                except httpx.TimeoutException:
                    logger.warning(
                        f"Timeout on {path}, retrying in {delay:.1f}s (attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                    )
                    await asyncio.sleep(delay)
                    delay *= RETRY_BACKOFF_FACTOR

                except httpx.HTTPStatusError as exc:
                    raise CatalogError(f"HTTP {exc.response.status_code} on {path}") from exc

                except httpx.HTTPError as exc:
                    raise CatalogError(f"Request error on {path}: {type(exc).__name__}: {exc}") from exc

                except ValueError as exc:
                    raise CatalogError(f"Invalid JSON from {path}: {exc}") from exc

        raise CatalogError(f"Max retries exceeded for {path}")

    async def get_movie_detail(self, movie_id: int) -> MovieDetail:
        payload = await self._get_json(
            f"/movie/{movie_id}", {"append_to_response": self.DETAIL_APPENDS}
        )
        return parse_movie_detail(payload)

    async def get_collection_movies(self, collection_id: int) -> list[MovieSummary]:
        payload = await self._get_json(f"/collection/{collection_id}")
        return _parse_results(payload, key="parts")

    async def get_person_credits(self, person_id: int) -> PersonCredits:
        payload = await self._get_json(f"/person/{person_id}/movie_credits")
        return parse_person_credits(payload)

    async def get_keyword_movies(self, keyword_id: int) -> list[MovieSummary]:
        payload = await self._get_json(
            f"/keyword/{keyword_id}/movies", {"include_adult": "false"}
        )
        return _parse_results(payload)

    async def discover_movies(self, filters: DiscoverFilters) -> list[MovieSummary]:
        params = {"include_adult": "false", "page": "1", **filters.to_params()}
        payload = await self._get_json("/discover/movie", params)
        return _parse_results(payload)

    async def resolve_keyword_id(self, text: str) -> int | None:
        """Map keyword text to an id, preferring an exact case-insensitive name match."""
        payload = await self._get_json("/search/keyword", {"query": text})
        results = [r for r in payload.get("results") or [] if r.get("id") is not None]
        if not results:
            return None
        wanted = text.strip().lower()
        for result in results:
            if (result.get("name") or "").lower() == wanted:
                return int(result["id"])
        return int(results[0]["id"])

    async def search_movies(self, query: str) -> list[MovieSummary]:
        if not query or not query.strip():
            return []
        payload = await self._get_json(
            "/search/movie", {"query": query.strip(), "include_adult": "false", "page": "1"}
        )
        return _parse_results(payload)

    async def get_movie_directors(self, movie_id: int) -> list[Person]:
        payload = await self._get_json(f"/movie/{movie_id}/credits")
        return parse_directors(payload)

    async def search_with_directors(self, query: str, limit: int = SEARCH_RESULTS) -> list[MovieSummary]:
        """
        Search titles and people in one query.

        The first SEARCH_MAX_PEOPLE person hits contribute the films they
        directed, annotated with their name; title hits follow. Results are
        deduplicated by id, truncated to ``limit``, and any result still
        missing a director gets one from its credits. Failed credit lookups
        leave the affected results as they are.
        """
        if not query or not query.strip():
            return []
        payload = await self._get_json(
            "/search/multi", {"query": query.strip(), "include_adult": "false", "page": "1"}
        )
        hits = [h for h in payload.get("results") or [] if h.get("id") is not None]

        people = [
            Person(id=int(h["id"]), name=h.get("name") or "")
            for h in hits
            if h.get("media_type") == "person"
        ][:SEARCH_MAX_PEOPLE]
        filmographies = await asyncio.gather(
            *(self.get_person_credits(person.id) for person in people),
            return_exceptions=True,
        )

        found: dict[int, MovieSummary] = {}
        for person, credits in zip(people, filmographies):
            if isinstance(credits, BaseException):
                if isinstance(credits, asyncio.CancelledError):
                    raise credits
                logger.warning(f"Search: filmography of {person.name or person.id} unavailable: {credits}")
                continue
            for movie in credits.directed:
                found.setdefault(movie.id, replace(movie, director=person.name or None))
        for hit in hits:
            if hit.get("media_type") == "movie":
                movie = parse_movie_summary(hit)
                found.setdefault(movie.id, movie)

        results = list(found.values())[:limit]
        missing = [m for m in results if not m.director]
        directors = await asyncio.gather(
            *(self.get_movie_directors(m.id) for m in missing),
            return_exceptions=True,
        )

        names: dict[int, str] = {}
        for movie, crew in zip(missing, directors):
            if isinstance(crew, BaseException):
                if isinstance(crew, asyncio.CancelledError):
                    raise crew
                logger.debug(f"Search: credits for movie {movie.id} unavailable: {crew}")
                continue
            if crew and crew[0].name:
                names[movie.id] = crew[0].name

        return [replace(m, director=names[m.id]) if m.id in names else m for m in results]

    async def get_genres(self) -> list[Genre]:
        payload = await self._get_json("/genre/movie/list")
        return [
            Genre(id=int(g["id"]), name=g.get("name") or "")
            for g in payload.get("genres") or []
            if g.get("id") is not None
        ]

    async def get_movies_by_genre(self, genre_id: int) -> list[MovieSummary]:
        """Most popular movies of one genre."""
        return await self.discover_movies(DiscoverFilters(genre_ids=(genre_id,)))
