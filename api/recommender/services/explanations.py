from __future__ import annotations

from typing import Any, Callable

from .features import ACTIVITY_FEATURE_NAMES, PERSON, PERSON_FEATURE_NAMES

FALLBACK_REASON = "Good overall compatibility"
MAX_REASONS = 3

Template = tuple[float, Callable[[dict[str, Any]], str]]


def _safe_num(v: Any, default: float = 0.5) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _clean_text(line: str) -> str:
    return " ".join(str(line or "").split()).strip()


def _nearby(ctx: dict[str, Any], prefix: str) -> str:
    distance = ctx.get("distance_km")
    if distance is None:
        return prefix
    return f"{prefix} ({distance:g} km away)"


def _shared(ctx: dict[str, Any], limit: int) -> list[str]:
    return list(ctx.get("shared_interests") or [])[:limit]


def _person_interests(ctx: dict[str, Any]) -> str:
    shared = list(ctx.get("shared_interests") or [])
    if not shared:
        return "Lots of interests in common"
    return f"Shares {len(shared)} interests: {', '.join(shared[:3])}"


def _activity_interests(ctx: dict[str, Any]) -> str:
    shared = _shared(ctx, 2)
    if not shared:
        return "Fits what you are into"
    return f"Matches your interests: {', '.join(shared)}"


def _activity_category(ctx: dict[str, Any]) -> str:
    category = ctx.get("category")
    return f"You often join {category} activities" if category else "Similar to activities you have joined"


PERSON_TEMPLATES: dict[str, Template] = {
    "location": (0.7, lambda ctx: _nearby(ctx, "Lives nearby")),
    "interests": (0.6, _person_interests),
    "age": (0.8, lambda ctx: "Great age compatibility"),
    "personality": (0.7, lambda ctx: "Compatible personality traits"),
    "activity": (0.7, lambda ctx: "Similar activity preferences"),
    "behavior": (0.7, lambda ctx: "Active at similar times"),
}

ACTIVITY_TEMPLATES: dict[str, Template] = {
    "interests": (0.6, _activity_interests),
    "location": (0.7, lambda ctx: _nearby(ctx, "Close to you")),
    "category": (0.7, _activity_category),
    "timing": (0.7, lambda ctx: "Scheduled at a time that suits you"),
    "social": (0.7, lambda ctx: "Someone you like is going"),
    "group_size": (0.7, lambda ctx: "The group size you prefer"),
}


def explain(breakdown: dict[str, Any] | None, context: dict[str, Any] | None = None, kind: str = PERSON) -> list[str]:
    breakdown = breakdown or {}
    context = context or {}
    templates = PERSON_TEMPLATES if kind == PERSON else ACTIVITY_TEMPLATES
    order = PERSON_FEATURE_NAMES if kind == PERSON else ACTIVITY_FEATURE_NAMES

    cleared: list[tuple[float, int, str]] = []
    for idx, name in enumerate(order):
        threshold, _ = templates[name]
        value = _safe_num(breakdown.get(name), 0.0)
        if value > threshold:
            cleared.append((value, idx, name))
    cleared.sort(key=lambda item: (-item[0], item[1]))

    reasons = [_clean_text(templates[name][1](context)) for _, _, name in cleared[:MAX_REASONS]]
    return reasons or [FALLBACK_REASON]


def summarize(breakdown: dict[str, Any] | None) -> str:
    breakdown = breakdown or {}
    lines = []
    if _safe_num(breakdown.get("interests"), 0.0) > 0.7:
        lines.append("You have many shared interests and hobbies")
    if _safe_num(breakdown.get("location"), 0.0) > 0.8:
        lines.append("You live close to each other")
    if _safe_num(breakdown.get("personality"), 0.0) > 0.6:
        lines.append("Your personality types complement each other well")
    if _safe_num(breakdown.get("activity"), 0.0) > 0.6:
        lines.append("You enjoy similar types of activities")
    if not lines:
        lines.append(f"{FALLBACK_REASON} across the factors we look at")
    return ". ".join(lines) + "."
