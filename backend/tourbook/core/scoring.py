"""
Preference matching for tour recommendations.

A tour earns fixed points for each preference it satisfies:

    budget bracket            30
    duration <= trip length   20
    capacity >= group size    20
    category in activities    30

The match score is points / 100. Points are integers so the score is
exact, and the same constants drive both the in-process scorer and the
SQL expression used by the database path. Both paths must rank every
tour identically.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, false, true

BUDGET_POINTS = 30
DURATION_POINTS = 20
GROUP_POINTS = 20
ACTIVITY_POINTS = 30
MAX_POINTS = BUDGET_POINTS + DURATION_POINTS + GROUP_POINTS + ACTIVITY_POINTS

# Tours at or below this many points are not recommended (score 0.3)
MIN_RECOMMENDED_POINTS = 30

HIGH_RATING_THRESHOLD = 4.5

DEFAULT_RECOMMENDATION_LIMIT = 20
MAX_RECOMMENDATION_LIMIT = 50

# (exclusive lower bound, inclusive upper bound) in LKR
BUDGET_BRACKETS = {
    "budget": (None, 15000),
    "mid_range": (15000, 50000),
    "luxury": (50000, None),
}

BUDGET_REASONS = {
    "budget": "Fits your budget range",
    "mid_range": "Within your preferred price range",
    "luxury": "Premium experience matching your luxury preferences",
}


@dataclass
class ScoredTour:
    tour: Any
    points: int
    reasons: List[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        return points_to_score(self.points)


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


def points_to_score(points: int) -> float:
    return round(points / 100, 2)


def _bracket(budget_range) -> Tuple[Optional[int], Optional[int]]:
    return BUDGET_BRACKETS.get(_value(budget_range), (0, 0))


def in_budget(price, budget_range) -> bool:
    if _value(budget_range) not in BUDGET_BRACKETS:
        return False
    low, high = _bracket(budget_range)
    return (low is None or price > low) and (high is None or price <= high)


def match_points(tour, prefs) -> int:
    """Integer points earned by ``tour`` against ``prefs``"""
    points = 0
    if in_budget(tour.price, prefs.budget_range):
        points += BUDGET_POINTS
    if tour.duration <= prefs.travel_duration:
        points += DURATION_POINTS
    if tour.max_participants >= prefs.group_size:
        points += GROUP_POINTS
    if tour.category in (prefs.preferred_activities or []):
        points += ACTIVITY_POINTS
    return points


def calculate_match_score(tour, prefs) -> float:
    return points_to_score(match_points(tour, prefs))


def generate_match_reasons(tour, prefs) -> List[str]:
    """Human readable reasons for every condition that fired"""
    reasons = []

    if in_budget(tour.price, prefs.budget_range):
        reasons.append(BUDGET_REASONS[_value(prefs.budget_range)])

    if tour.duration <= prefs.travel_duration:
        reasons.append(
            f"Perfect {tour.duration}-day duration for your {prefs.travel_duration}-day trip"
        )

    if tour.max_participants >= prefs.group_size:
        reasons.append(f"Accommodates your group of {prefs.group_size}")

    if tour.category in (prefs.preferred_activities or []):
        reasons.append(f"Matches your interest in {tour.category} activities")

    if (tour.rating or 0) >= HIGH_RATING_THRESHOLD:
        reasons.append("Highly rated by other travelers")

    return reasons


def _sort_key(scored: ScoredTour):
    return (-scored.points, -(scored.tour.rating or 0), scored.tour.id.hex)


def rank_tours(tours: Iterable[Any], prefs, limit: int = DEFAULT_RECOMMENDATION_LIMIT) -> List[ScoredTour]:
    """In-process ranking: drop weak matches, best first, cut to ``limit``"""
    scored = []
    for tour in tours:
        points = match_points(tour, prefs)
        if points <= MIN_RECOMMENDED_POINTS:
            continue
        scored.append(ScoredTour(tour=tour, points=points, reasons=generate_match_reasons(tour, prefs)))

    scored.sort(key=_sort_key)
    return scored[:limit]


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_RECOMMENDATION_LIMIT
    return min(limit, MAX_RECOMMENDATION_LIMIT)


# ===== SQL EXPRESSION =====

def budget_condition(price_column, budget_range):
    if _value(budget_range) not in BUDGET_BRACKETS:
        return false()
    low, high = _bracket(budget_range)
    conditions = []
    if low is not None:
        conditions.append(price_column > low)
    if high is not None:
        conditions.append(price_column <= high)
    return and_(true(), *conditions)


def match_points_expression(tour_entity, prefs):
    """Same point sum as ``match_points`` built as a SQL expression"""
    activities: Sequence[str] = list(prefs.preferred_activities or [])
    return (
        case((budget_condition(tour_entity.price, prefs.budget_range), BUDGET_POINTS), else_=0)
        + case((tour_entity.duration <= prefs.travel_duration, DURATION_POINTS), else_=0)
        + case((tour_entity.max_participants >= prefs.group_size, GROUP_POINTS), else_=0)
        + case((tour_entity.category.in_(activities), ACTIVITY_POINTS), else_=0)
    )
