"""
Configuration constants for the TMDB recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Catalog (TMDB) Configuration
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3").rstrip("/")
TMDB_LANGUAGE = os.environ.get("TMDB_LANGUAGE", "en-US")

# HTTP Configuration
HTTP_TIMEOUT = _get_float_env("TMDB_REC_HTTP_TIMEOUT", 30.0, min_val=1.0)
DEFAULT_MAX_CONCURRENT = _get_int_env("TMDB_REC_MAX_CONCURRENT", 8, min_val=1)
CATALOG_HTTP2 = _get_bool_env("TMDB_REC_HTTP2", False)

# Retry and Rate Limiting
MAX_HTTP_RETRIES = 3
DEFAULT_RETRY_AFTER = 10  # Default wait time if Retry-After header missing
RETRY_INITIAL_DELAY = 0.5
RETRY_BACKOFF_FACTOR = 2.0

# Persisted weight overrides
WEIGHTS_PATH = Path(os.environ.get("TMDB_REC_WEIGHTS", "data/scoring_weights.json"))

# Signal scores: source -> (base score on first insert, increment when already matched)
# Director, cast, genre and region numbers are multiplied by ScoringWeights at run time.
SIGNAL_SCORES = {
    'franchise': (85.0, 0.0),
    'director': (65.0, 20.0),
    'cast': (55.0, 15.0),
    'keyword': (45.0, 8.0),
    'genre': (40.0, 5.0),
    'recommend': (50.0, 10.0),
    'era': (35.0, 3.0),
    'visual': (45.0, 12.0),
    'region': (45.0, 10.0),
    'mood': (60.0, 20.0),
    'acclaimed': (60.0, 15.0),
}

# Reason labels
REASON_FRANCHISE = "Same Film Series"
REASON_DIRECTOR = "Same Director"
REASON_CAST = "Same Actor ({})"
REASON_KEYWORD = "Similar Themes"
REASON_GENRE = "Genre Match"
REASON_RECOMMEND = "TMDB Recommended"
REASON_ERA = "Same Era"
REASON_VISUAL = "Visual Style"
REASON_REGION = "Same Region/Language"
REASON_MOOD = "Matches {} Mood"
REASON_ACCLAIMED = "Critically Acclaimed"
REASON_NEW_RELEASE = "New Release"

# Score finalization
SCORE_CAP = 95.0
MULTI_MATCH_BONUS = 5.0
SMOOTHING_FACTOR = 0.8
SMOOTHING_NOISE = 5.0
VOTE_COUNT_DEFAULT = 1  # log10(1) == 0: unvoted films sort last on ties

# Extractor limits
MAX_CAST_CONSIDERED = 5
LEAD_ROLE_MAX_ORDER = 5  # billing position must be below this
MAX_ROLES_PER_ACTOR = 10
MAX_KEYWORDS_CONSIDERED = 10
MAX_MOVIES_PER_KEYWORD = 5
GENERIC_KEYWORDS = frozenset({"based on novel", "violence", "murder"})
GENRE_RESULTS = 15
ERA_WINDOW_YEARS = 5
ERA_MIN_VOTE_COUNT = 100
ERA_RESULTS = 10
VISUAL_RESULTS = 10
REGION_RESULTS = 10
MOOD_RESULTS = 15
ACCLAIMED_MIN_VOTE_COUNT = 1000
ACCLAIMED_MIN_RATING = 7.5
ACCLAIMED_RESULTS = 10

# Moods offered to callers, each mapped to the keyword strings that define it
MOOD_KEYWORDS = {
    'happy': ["feel-good", "friendship", "comedy", "family", "heartwarming"],
    'dark': ["dark", "psychological thriller", "dystopia", "revenge", "noir"],
    'action': ["action hero", "explosion", "chase", "martial arts", "heist"],
    'thoughtful': ["philosophy", "existentialism", "mind-bending", "identity", "time travel"],
    'emotional': ["tearjerker", "loss of loved one", "love", "grief", "coming of age"],
}

# Preferences
SAME_LANGUAGE_BOOST = 1.5
NEW_RELEASE_YEARS = 3
NEW_RELEASE_BONUS = 10.0  # multiplied by weights.era

# Combiners
MAX_SEEDS = 5
MAX_RESULTS = 50
HYBRID_POSITION_DECAY = 0.5
HYBRID_JITTER = 0.05
DEFAULT_RATING = 5.0
RATING_SCALE = 10.0
REPEAT_DAMPING = 0.8

# Detail enrichment of the top results
ENRICH_TOP_N = _get_int_env("TMDB_REC_ENRICH_TOP_N", 30, min_val=0)

# Title/director search
SEARCH_RESULTS = 8
SEARCH_MAX_PEOPLE = 2  # person hits expanded to their directed films
