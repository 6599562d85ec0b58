import argparse
import json
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from recommender.records import ActivityRecord, InteractionRecord, Profile
from recommender.services.engine import RecommendationService
from recommender.stores import InMemoryActivityStore, InMemoryInteractionStore, InMemoryProfileStore

CITIES = {
    "new york": (40.7128, -74.0060),
    "brooklyn": (40.6782, -73.9442),
    "jersey city": (40.7178, -74.0431),
}
INTERESTS = ["hiking", "coffee", "jazz", "climbing", "cooking", "film", "running", "board games", "yoga", "photography"]
CATEGORIES = ["outdoors", "food", "music", "sports", "arts"]
GENDERS = ["woman", "man", "nonbinary"]


def _profile(rng: random.Random, idx: int, now: datetime) -> Profile:
    city = rng.choice(list(CITIES))
    lat, lon = CITIES[city]
    return Profile.from_dict(
        {
            "user_id": f"u{idx:03d}",
            "display_name": f"Demo {idx}",
            "age": rng.randint(22, 45),
            "gender": rng.choice(GENDERS),
            "bio": "Here for the demo",
            "occupation": rng.choice(["engineer", "designer", "nurse", None]),
            "location": {"latitude": lat + rng.uniform(-0.05, 0.05), "longitude": lon + rng.uniform(-0.05, 0.05), "city": city},
            "interests": rng.sample(INTERESTS, k=rng.randint(2, 5)),
            "personality": {t: rng.randint(10, 90) for t in ("openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism")},
            "activity_level": rng.randint(1, 10),
            "last_active": (now - timedelta(hours=rng.randint(0, 24 * 20))).isoformat(),
            "preferences": {"age_range": {"min": 21, "max": 50}},
        }
    )


def _activity(rng: random.Random, idx: int, profiles: list[Profile], now: datetime) -> ActivityRecord:
    city = rng.choice(list(CITIES))
    lat, lon = CITIES[city]
    participants = rng.sample([p.user_id for p in profiles], k=rng.randint(1, 6))
    return ActivityRecord.from_dict(
        {
            "activity_id": f"a{idx:03d}",
            "category": rng.choice(CATEGORIES),
            "title": f"Demo activity {idx}",
            "tags": rng.sample(INTERESTS, k=2),
            "location": {"latitude": lat, "longitude": lon, "city": city},
            "scheduled_at": (now + timedelta(days=rng.randint(1, 14), hours=rng.randint(9, 21))).isoformat(),
            "organizer_id": participants[0],
            "participant_ids": participants,
        }
    )


def build_service(n_users: int, n_activities: int, seed: int) -> RecommendationService:
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    profiles = [_profile(rng, i, now) for i in range(n_users)]
    activities = [_activity(rng, i, profiles, now) for i in range(n_activities)]
    interactions = []
    for _ in range(n_users * 3):
        a, b = rng.sample(profiles, k=2)
        interactions.append(
            InteractionRecord(
                actor_id=a.user_id,
                target_id=b.user_id,
                type=rng.choice(["like", "like", "pass"]),
                created_at=now - timedelta(hours=rng.randint(0, 24 * 10)),
            )
        )
    return RecommendationService(
        profile_store=InMemoryProfileStore(profiles),
        interaction_store=InMemoryInteractionStore(interactions),
        activity_store=InMemoryActivityStore(activities),
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Rank demo people and activities against in-memory data")
    parser.add_argument("--n-users", type=int, default=60)
    parser.add_argument("--n-activities", type=int, default=20)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--user-id", type=str, default="u000")
    parser.add_argument("--limit", type=int, default=5)
    args = parser.parse_args()

    service = build_service(args.n_users, args.n_activities, args.seed)
    people = service.get_person_recommendations(args.user_id, {"limit": args.limit})
    activities = service.get_activity_recommendations(args.user_id, {"limit": args.limit})
    print(
        json.dumps(
            {
                "people": people.model_dump(mode="json"),
                "activities": activities.model_dump(mode="json"),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
