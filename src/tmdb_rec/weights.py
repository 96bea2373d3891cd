"""
Scoring weights for the similarity signals.

Weights scale the director, cast, genre and region signals and the
multi-match bonus. They can be overridden per call (user preferences),
scaled per seed (personalized recommendations) or persisted as JSON.
Missing files fall back to the tuned defaults.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, TYPE_CHECKING

from .config import SAME_LANGUAGE_BOOST, WEIGHTS_PATH

if TYPE_CHECKING:
    from .recommender import Preferences

logger = logging.getLogger(__name__)

# Bound weights to avoid extreme amplification
MIN_WEIGHT = 0.0
MAX_WEIGHT = 3.0


def _clamp_weight(value: float) -> float:
    return max(MIN_WEIGHT, min(MAX_WEIGHT, value))


@dataclass(frozen=True)
class ScoringWeights:
    """Per-signal multipliers; one instance stays fixed for a whole run."""

    director: float = 1.2
    genre: float = 1.0
    cast: float = 0.9
    era: float = 1.0
    language: float = 1.0
    combined_bonus: float = 1.0

    def __post_init__(self) -> None:
        for f in fields(self):
            raw = getattr(self, f.name)
            try:
                value = _clamp_weight(float(raw))
            except (TypeError, ValueError):
                logger.warning("Invalid weight %s=%r, using default %s", f.name, raw, f.default)
                value = f.default
            # Frozen dataclass: bypass __setattr__ for normalization
            object.__setattr__(self, f.name, value)

    def scaled(self, factor: float) -> "ScoringWeights":
        """Scale the three content weights (director, genre, cast) by ``factor``."""
        return replace(
            self,
            director=self.director * factor,
            genre=self.genre * factor,
            cast=self.cast * factor,
        )

    def with_preferences(self, prefs: "Preferences | None") -> "ScoringWeights":
        """Apply caller overrides from a Preferences object."""
        if prefs is None:
            return self

        overrides: dict[str, float] = {}
        if prefs.weight_director is not None:
            overrides["director"] = prefs.weight_director
        if prefs.weight_genre is not None:
            overrides["genre"] = prefs.weight_genre
        if prefs.weight_cast is not None:
            overrides["cast"] = prefs.weight_cast
        if prefs.prefer_same_language:
            overrides["language"] = self.language * SAME_LANGUAGE_BOOST

        return replace(self, **overrides) if overrides else self

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScoringWeights":
        known = {f.name for f in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            logger.debug("Ignoring unknown weight keys: %s", sorted(unknown))
        return cls(**{k: v for k, v in payload.items() if k in known})


def load_weights(path: str | Path | None = None) -> ScoringWeights:
    """Load weights from disk; return defaults if missing or invalid."""
    weight_path = Path(path) if path else WEIGHTS_PATH
    if not weight_path.exists():
        logger.debug("Weights file not found at %s; using defaults", weight_path)
        return ScoringWeights()

    try:
        return ScoringWeights.from_dict(json.loads(weight_path.read_text()))
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("Failed to load weights from %s: %s", weight_path, exc)
        return ScoringWeights()


def save_weights(weights: ScoringWeights, path: str | Path | None = None) -> Path:
    """Persist weights to disk."""
    weight_path = Path(path) if path else WEIGHTS_PATH
    weight_path.parent.mkdir(parents=True, exist_ok=True)
    weight_path.write_text(json.dumps(weights.to_dict(), indent=2))
    return weight_path
