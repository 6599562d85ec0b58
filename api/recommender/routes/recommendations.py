from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import RL_FEEDBACK_LIMIT, RL_RECOMMENDATIONS_LIMIT, RL_WINDOW_SECONDS
from ..deps import current_user_id, get_recommendation_service
from ..schemas import (
    ActivityRecommendationList,
    Explanation,
    FeedbackReceipt,
    FeedbackRequest,
    RecommendationList,
)
from ..services.engine import RecommendationService
from ..services.rate_limit import rate_limit_dependency

router = APIRouter()
scaffold_router = APIRouter()

RL_RECOMMENDATIONS = rate_limit_dependency("recommendations", RL_RECOMMENDATIONS_LIMIT, RL_WINDOW_SECONDS)
RL_FEEDBACK = rate_limit_dependency("recommendation_feedback", RL_FEEDBACK_LIMIT, RL_WINDOW_SECONDS)

CATEGORIES = ("people", "activities")


def _person_options(
    limit: int | None,
    max_distance_km: float | None,
    age_min: int | None,
    age_max: int | None,
    force_refresh: bool,
    min_score: float | None,
) -> dict[str, Any]:
    options: dict[str, Any] = {"forceRefresh": force_refresh}
    if limit is not None:
        options["limit"] = limit
    if max_distance_km is not None:
        options["maxDistanceKm"] = max_distance_km
    if age_min is not None or age_max is not None:
        options["ageRange"] = {"min": 18 if age_min is None else age_min, "max": 99 if age_max is None else age_max}
    if min_score is not None:
        options["minScore"] = min_score
    return options


def _activity_options(limit: int | None, max_distance_km: float | None, category: str | None, force_refresh: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"forceRefresh": force_refresh}
    if limit is not None:
        options["limit"] = limit
    if max_distance_km is not None:
        options["maxDistanceKm"] = max_distance_km
    if category:
        options["category"] = category
    return options


@scaffold_router.get("/health")
def recommendations_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "recommendations"}


@router.get("/people", response_model=RecommendationList)
def get_person_recommendations(
    limit: int | None = Query(default=None),
    max_distance_km: float | None = Query(default=None, alias="maxDistanceKm"),
    age_min: int | None = Query(default=None, alias="ageMin"),
    age_max: int | None = Query(default=None, alias="ageMax"),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    min_score: float | None = Query(default=None, alias="minScore"),
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_RECOMMENDATIONS,
) -> RecommendationList:
    options = _person_options(limit, max_distance_km, age_min, age_max, force_refresh, min_score)
    return service.get_person_recommendations(user_id, options)


@router.get("/activities", response_model=ActivityRecommendationList)
def get_activity_recommendations(
    limit: int | None = Query(default=None),
    max_distance_km: float | None = Query(default=None, alias="maxDistanceKm"),
    category: str | None = Query(default=None),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_RECOMMENDATIONS,
) -> ActivityRecommendationList:
    options = _activity_options(limit, max_distance_km, category, force_refresh)
    return service.get_activity_recommendations(user_id, options)


@router.get("/people/{candidate_id}/explanation", response_model=Explanation)
def get_recommendation_explanation(
    candidate_id: str,
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_RECOMMENDATIONS,
) -> Explanation:
    return service.explain(user_id, candidate_id)


@router.post("/feedback", response_model=FeedbackReceipt)
def submit_recommendation_feedback(
    payload: FeedbackRequest,
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_FEEDBACK,
) -> FeedbackReceipt:
    return service.submit_feedback(user_id, payload.candidate_id, payload.action, payload.confidence)


@router.post("/refresh", response_model=RecommendationList)
def refresh_recommendations(
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_RECOMMENDATIONS,
) -> RecommendationList:
    return service.refresh(user_id)


@router.get("/categories/{category}")
def get_category_recommendations(
    category: str,
    limit: int | None = Query(default=None),
    max_distance_km: float | None = Query(default=None, alias="maxDistanceKm"),
    user_id: str = Depends(current_user_id),
    service: RecommendationService = Depends(get_recommendation_service),
    _: None = RL_RECOMMENDATIONS,
) -> dict[str, Any]:
    if category not in CATEGORIES:
        raise HTTPException(status_code=400, detail=f"category must be one of {list(CATEGORIES)}")
    if category == "people":
        page = service.get_person_recommendations(user_id, _person_options(limit, max_distance_km, None, None, False, None))
    else:
        page = service.get_activity_recommendations(user_id, _activity_options(limit, max_distance_km, None, False))
    return {"category": category, **page.model_dump(mode="json")}
