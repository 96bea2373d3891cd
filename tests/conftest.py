import importlib
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from tmdb_rec.catalog import (  # noqa: E402
    ActingCredit,
    CatalogError,
    DiscoverFilters,
    Genre,
    MovieDetail,
    MovieSummary,
    PersonCredits,
)


def make_movie(movie_id, title=None, year=2010, vote_average=7.0, vote_count=500, popularity=10.0, genres=()):
    return MovieSummary(
        id=movie_id,
        title=title or f"Movie {movie_id}",
        release_date=f"{year}-06-01" if year else "",
        vote_average=vote_average,
        vote_count=vote_count,
        popularity=popularity,
        genres=tuple(Genre(id=g, name=f"Genre {g}") for g in genres),
    )


class FakeCatalog:
    """
    In-memory catalog. Lookups not configured return empty results;
    anything listed in ``failures`` raises CatalogError.
    """

    def __init__(self):
        self.details: dict[int, MovieDetail] = {}
        self.collections: dict[int, list[MovieSummary]] = {}
        self.people: dict[int, PersonCredits] = {}
        self.keyword_movies: dict[int, list[MovieSummary]] = {}
        self.keyword_ids: dict[str, int] = {}
        self.search_results: list[MovieSummary] = []
        self.genres: list[Genre] = []
        self.discover = lambda filters: []
        self.failures: set = set()
        self.calls: list[tuple] = []

    def _check(self, method, arg):
        self.calls.append((method, arg))
        if method in self.failures or (method, arg) in self.failures:
            raise CatalogError(f"{method}({arg}) failed")

    async def get_movie_detail(self, movie_id):
        self._check("get_movie_detail", movie_id)
        if movie_id not in self.details:
            raise CatalogError(f"Not found: /movie/{movie_id}")
        return self.details[movie_id]

    async def get_collection_movies(self, collection_id):
        self._check("get_collection_movies", collection_id)
        return list(self.collections.get(collection_id, []))

    async def get_person_credits(self, person_id):
        self._check("get_person_credits", person_id)
        return self.people.get(person_id, PersonCredits())

    async def get_keyword_movies(self, keyword_id):
        self._check("get_keyword_movies", keyword_id)
        return list(self.keyword_movies.get(keyword_id, []))

    async def discover_movies(self, filters):
        self._check("discover_movies", filters)
        return list(self.discover(filters))

    async def resolve_keyword_id(self, text):
        self._check("resolve_keyword_id", text)
        return self.keyword_ids.get(text)

    async def search_movies(self, query):
        self._check("search_movies", query)
        return list(self.search_results)

    async def search_with_directors(self, query, limit=8):
        self._check("search_with_directors", query)
        return list(self.search_results)[:limit]

    async def get_genres(self):
        self._check("get_genres", None)
        return list(self.genres)

    async def get_movies_by_genre(self, genre_id):
        self._check("get_movies_by_genre", genre_id)
        return await self.discover_movies(DiscoverFilters(genre_ids=(genre_id,)))

    def add_director(self, person_id, directed):
        self.people[person_id] = PersonCredits(directed=list(directed))

    def add_actor(self, person_id, roles):
        """roles: (movie, billing order) pairs"""
        self.people[person_id] = PersonCredits(acted=[ActingCredit(movie=m, order=o) for m, o in roles])


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def fresh_config(monkeypatch):
    """
    Reload config under the test's environment, then restore it afterwards.
    """
    import tmdb_rec.config as config

    yield lambda: importlib.reload(config)

    monkeypatch.undo()
    importlib.reload(config)
