import json

import pytest

from tmdb_rec.recommender import Preferences
from tmdb_rec.weights import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    ScoringWeights,
    load_weights,
    save_weights,
)


def test_defaults():
    weights = ScoringWeights()

    assert weights.director == pytest.approx(1.2)
    assert weights.genre == pytest.approx(1.0)
    assert weights.cast == pytest.approx(0.9)
    assert weights.era == pytest.approx(1.0)
    assert weights.language == pytest.approx(1.0)
    assert weights.combined_bonus == pytest.approx(1.0)


def test_values_are_clamped_and_invalid_values_fall_back():
    weights = ScoringWeights(director=10.0, genre=-2, cast="oops", era="1.5")

    assert weights.director == MAX_WEIGHT
    assert weights.genre == MIN_WEIGHT
    assert weights.cast == pytest.approx(0.9)
    assert weights.era == pytest.approx(1.5)


def test_scaled_touches_only_content_weights():
    weights = ScoringWeights().scaled(0.5)

    assert weights.director == pytest.approx(0.6)
    assert weights.genre == pytest.approx(0.5)
    assert weights.cast == pytest.approx(0.45)
    assert weights.era == pytest.approx(1.0)
    assert weights.language == pytest.approx(1.0)
    assert weights.combined_bonus == pytest.approx(1.0)


def test_with_preferences_applies_overrides():
    base = ScoringWeights()

    assert base.with_preferences(None) is base
    assert base.with_preferences(Preferences()) is base

    prefs = Preferences(weight_director=2.0, weight_cast=0.0, prefer_same_language=True)
    weights = base.with_preferences(prefs)

    assert weights.director == pytest.approx(2.0)
    assert weights.cast == pytest.approx(0.0)
    assert weights.genre == pytest.approx(1.0)
    assert weights.language == pytest.approx(1.5)


def test_from_dict_ignores_unknown_keys():
    weights = ScoringWeights.from_dict({"director": "2.5", "visual": 4})

    assert weights.director == pytest.approx(2.5)
    assert not hasattr(weights, "visual")


def test_load_weights_handles_missing_invalid_and_reads_file(tmp_path):
    assert load_weights(tmp_path / "missing.json") == ScoringWeights()

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_weights(broken) == ScoringWeights()

    not_object = tmp_path / "list.json"
    not_object.write_text("[1, 2]")
    assert load_weights(not_object) == ScoringWeights()

    path = tmp_path / "weights.json"
    path.write_text(json.dumps({"genre": 1.7}))
    assert load_weights(path).genre == pytest.approx(1.7)


def test_save_weights_writes_json(tmp_path):
    path = tmp_path / "nested" / "weights.json"

    saved_path = save_weights(ScoringWeights(cast=2.1), path)
    assert saved_path.exists()

    loaded = json.loads(saved_path.read_text())
    assert loaded["cast"] == pytest.approx(2.1)
    assert loaded["director"] == pytest.approx(1.2)
