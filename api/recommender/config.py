import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/recommender")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MIN_SCORE = float(os.getenv("MIN_SCORE", "0.30"))
DEFAULT_PERSON_LIMIT = int(os.getenv("DEFAULT_PERSON_LIMIT", "20"))
DEFAULT_ACTIVITY_LIMIT = int(os.getenv("DEFAULT_ACTIVITY_LIMIT", "10"))
MAX_LIMIT = int(os.getenv("MAX_LIMIT", "50"))
DEFAULT_MAX_DISTANCE_KM = float(os.getenv("DEFAULT_MAX_DISTANCE_KM", "50"))
DEFAULT_ACTIVITY_DISTANCE_KM = float(os.getenv("DEFAULT_ACTIVITY_DISTANCE_KM", "25"))
CANDIDATE_POOL_MULTIPLIER = int(os.getenv("CANDIDATE_POOL_MULTIPLIER", "3"))
ACTIVITY_POOL_MULTIPLIER = int(os.getenv("ACTIVITY_POOL_MULTIPLIER", "2"))
RETRIEVAL_ACTIVE_WITHIN_DAYS = int(os.getenv("RETRIEVAL_ACTIVE_WITHIN_DAYS", "30"))

RANKING_WORKERS = int(os.getenv("RANKING_WORKERS", str(os.cpu_count() or 4)))
RANKING_TIMEOUT_SECONDS = float(os.getenv("RANKING_TIMEOUT_SECONDS", "5.0"))

PERSON_CACHE_TTL_SECONDS = int(os.getenv("PERSON_CACHE_TTL_SECONDS", "3600"))
ACTIVITY_CACHE_TTL_SECONDS = int(os.getenv("ACTIVITY_CACHE_TTL_SECONDS", "1800"))

# Fixed blend between the learned model and the rule score. Pending product calibration.
ML_BLEND_WEIGHT = float(os.getenv("ML_BLEND_WEIGHT", "0.6"))
MODEL_PATH = os.getenv("MODEL_PATH", "").strip()

TRAIT_SCALE_MAX = float(os.getenv("TRAIT_SCALE_MAX", "100"))
BEHAVIOR_MIN_EVENTS = int(os.getenv("BEHAVIOR_MIN_EVENTS", "3"))
RECENCY_WINDOW_DAYS = int(os.getenv("RECENCY_WINDOW_DAYS", "14"))

DIVERSITY_GROUP_CAP = int(os.getenv("DIVERSITY_GROUP_CAP", "3"))
DIVERSITY_OVERFLOW_PENALTY = float(os.getenv("DIVERSITY_OVERFLOW_PENALTY", "0.90"))

RL_RECOMMENDATIONS_LIMIT = int(os.getenv("RL_RECOMMENDATIONS_LIMIT", "50"))
RL_FEEDBACK_LIMIT = int(os.getenv("RL_FEEDBACK_LIMIT", "120"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "900"))

DEFAULT_PERSON_WEIGHTS: dict[str, float] = {
    "location": float(os.getenv("LOCATION_W", "0.25")),
    "age": float(os.getenv("AGE_W", "0.15")),
    "interests": float(os.getenv("INTERESTS_W", "0.20")),
    "personality": float(os.getenv("PERSONALITY_W", "0.15")),
    "activity": float(os.getenv("ACTIVITY_W", "0.10")),
    "behavior": float(os.getenv("BEHAVIOR_W", "0.15")),
}

DEFAULT_ACTIVITY_WEIGHTS: dict[str, float] = {
    "location": 0.25,
    "interests": 0.30,
    "category": 0.20,
    "timing": 0.10,
    "group_size": 0.05,
    "social": 0.10,
}


def _apply_json_override(target: dict[str, Any], env_name: str) -> None:
    raw = os.getenv(env_name)
    if not raw:
        return
    try:
        target.update(json.loads(raw))
    except json.JSONDecodeError:
        logger.warning("Ignoring %s: not valid JSON", env_name)


_apply_json_override(DEFAULT_PERSON_WEIGHTS, "PERSON_WEIGHTS_JSON")
_apply_json_override(DEFAULT_ACTIVITY_WEIGHTS, "ACTIVITY_WEIGHTS_JSON")
