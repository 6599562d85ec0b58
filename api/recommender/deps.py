import logging
from functools import lru_cache

from fastapi import Header, HTTPException

from .config import MODEL_PATH
from .services.engine import RecommendationService
from .services.inference import load_inference_model
from .stores import SqlActivityStore, SqlInteractionStore, SqlProfileStore

logger = logging.getLogger(__name__)


def parse_user_id(raw_user_id: str | None) -> str | None:
    if not raw_user_id:
        return None
    value = raw_user_id.strip()
    if not value or len(value) > 128:
        return None
    return value


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    user_id = parse_user_id(x_user_id)
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id


@lru_cache(maxsize=1)
def get_recommendation_service() -> RecommendationService:
    inference = None
    if MODEL_PATH:
        inference = load_inference_model(MODEL_PATH)
    else:
        logger.info("[RECS] MODEL_PATH not set, scoring with rule weights only")
    return RecommendationService(
        profile_store=SqlProfileStore(),
        interaction_store=SqlInteractionStore(),
        activity_store=SqlActivityStore(),
        inference=inference,
    )
