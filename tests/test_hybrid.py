import pytest

from conftest import make_movie
from tmdb_rec.catalog import MovieDetail
from tmdb_rec.hybrid import HybridRecommender, SeedWeight
from tmdb_rec.recommender import SimilarityRecommender


class FixedRng:
    def __init__(self, value):
        self.value = value

    def uniform(self, low, high):
        return self.value


def _seed(catalog, seed_id, recommended):
    catalog.details[seed_id] = MovieDetail(
        movie=make_movie(seed_id),
        recommendations=[make_movie(m) for m in recommended],
    )


def _hybrid(catalog):
    # Zero smoothing noise and a neutral jitter make scores exact
    recommender = SimilarityRecommender(catalog, rng=FixedRng(0.0))
    return HybridRecommender(recommender, rng=FixedRng(1.0))


@pytest.mark.asyncio
async def test_hybrid_without_seeds_is_empty(catalog):
    assert await _hybrid(catalog).get_hybrid_recommendations([]) == []
    assert catalog.calls == []


@pytest.mark.asyncio
async def test_hybrid_single_seed_matches_single_seed_pipeline(catalog):
    _seed(catalog, 1, [10, 11, 12])
    hybrid = _hybrid(catalog)

    single = await hybrid.recommender.get_similar_movies(1)
    combined = await hybrid.get_hybrid_recommendations([1, 1])

    assert [r.id for r in combined] == [r.id for r in single]
    assert [r.score for r in combined] == [r.score for r in single]


@pytest.mark.asyncio
async def test_hybrid_rewards_movies_shared_by_seeds(catalog):
    _seed(catalog, 1, [10, 11, 2])
    _seed(catalog, 2, [10, 12, 1])

    recs = await _hybrid(catalog).get_hybrid_recommendations([1, 2])

    ids = [r.id for r in recs]
    assert ids[0] == 10
    assert set(ids) == {10, 11, 12}  # seeds never come back
    top = recs[0]
    # Each seed ranks 10 first with score 40; found by both of two seeds
    assert top.score == pytest.approx(40 * (1 + 2 / 2))
    assert top.seed_ids == [1, 2]
    assert top.reasons == ["TMDB Recommended"]
    assert all(0 <= r.score <= 95 for r in recs)


@pytest.mark.asyncio
async def test_hybrid_uses_first_five_unique_seeds(catalog):
    recs = await _hybrid(catalog).get_hybrid_recommendations([1, 1, 2, 3, 4, 5, 6])

    requested = [arg for method, arg in catalog.calls if method == "get_movie_detail"]
    assert sorted(requested) == [1, 2, 3, 4, 5]
    assert recs == []


@pytest.mark.asyncio
async def test_hybrid_survives_a_failing_seed(catalog):
    _seed(catalog, 1, [10])
    _seed(catalog, 2, [11])
    catalog.failures.add(("get_movie_detail", 2))

    recs = await _hybrid(catalog).get_hybrid_recommendations([1, 2])

    assert [r.id for r in recs] == [10]


def test_select_seeds_orders_by_rating_and_clamps():
    seeds = HybridRecommender.select_seeds(
        [1, 2, 3, 4, 5, 6, 7, 1],
        {1: 10, 2: 2, 4: 15, 5: -3, 6: 8},
    )

    assert seeds[0] == SeedWeight(movie_id=1, weight=1.0)
    assert seeds[1] == SeedWeight(movie_id=4, weight=1.0)
    assert [s.movie_id for s in seeds] == [1, 4, 6, 3, 7]
    assert seeds[3].weight == pytest.approx(0.5)
    assert len(seeds) == 5


@pytest.mark.asyncio
async def test_personalized_with_empty_history_is_empty(catalog):
    assert await _hybrid(catalog).get_personalized_recommendations([]) == []
    assert catalog.calls == []


@pytest.mark.asyncio
async def test_personalized_weights_by_rating_and_excludes_history(catalog):
    _seed(catalog, 1, [10, 2])
    _seed(catalog, 2, [10, 11])

    recs = await _hybrid(catalog).get_personalized_recommendations([1, 2], {1: 10})

    by_id = {r.id: r for r in recs}
    assert set(by_id) == {10, 11}
    # Seed 1 (weight 1.0) contributes 40; seed 2 (weight 0.5) adds 0.8 * 20
    assert by_id[10].score == pytest.approx(40 + 0.8 * 20)
    # Second place in seed 2's list: 40 * 0.5 * (0.5 + 0.5 * 0.5)
    assert by_id[11].score == pytest.approx(15.0)
    assert by_id[10].source == "personalized"
    assert by_id[10].seed_ids == [1, 2]
    assert [r.id for r in recs] == [10, 11]


@pytest.mark.asyncio
async def test_personalized_scores_are_capped(catalog):
    catalog.details[1] = MovieDetail(
        movie=make_movie(1),
        recommendations=[make_movie(10)],
        similar=[make_movie(10)],
        collection_id=5,
    )
    catalog.collections[5] = [make_movie(10)]
    for seed_id in (2, 3, 4, 5):
        catalog.details[seed_id] = catalog.details[1]
    hybrid = HybridRecommender(SimilarityRecommender(catalog, rng=FixedRng(5.0)), rng=FixedRng(1.0))

    recs = await hybrid.get_personalized_recommendations([1, 2, 3, 4, 5], {i: 10 for i in range(1, 6)})

    assert recs[0].id == 10
    assert recs[0].score == 95.0
