"""
Tests for preference matching and in-process ranking
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

from tourbook.core import scoring


def prefs(**overrides):
    values = {
        "budget_range": "mid_range",
        "travel_duration": 5,
        "group_size": 2,
        "preferred_activities": ["cultural"],
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def tour(**overrides):
    values = {
        "id": uuid.uuid4(),
        "price": Decimal("20000"),
        "duration": 3,
        "max_participants": 4,
        "category": "cultural",
        "rating": 0.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_full_match_scores_one():
    """Every condition met gives 30 + 20 + 20 + 30 points"""
    assert scoring.match_points(tour(), prefs()) == 100
    assert scoring.calculate_match_score(tour(), prefs()) == 1.0


def test_partial_matches():
    assert scoring.match_points(tour(category="beach"), prefs()) == 70
    assert scoring.match_points(tour(duration=7), prefs()) == 80
    assert scoring.match_points(tour(max_participants=1), prefs()) == 80
    assert scoring.calculate_match_score(tour(price=Decimal("60000"), category="beach"), prefs()) == 0.4


def test_budget_bracket_boundaries():
    """Lower bounds are exclusive, upper bounds inclusive"""
    assert scoring.in_budget(Decimal("15000"), "budget")
    assert not scoring.in_budget(Decimal("15000"), "mid_range")
    assert scoring.in_budget(Decimal("15000.01"), "mid_range")
    assert scoring.in_budget(Decimal("50000"), "mid_range")
    assert not scoring.in_budget(Decimal("50000"), "luxury")
    assert scoring.in_budget(Decimal("50000.01"), "luxury")
    assert not scoring.in_budget(Decimal("100"), "unknown")


def test_reasons_follow_condition_order():
    reasons = scoring.generate_match_reasons(tour(rating=4.8), prefs())
    assert reasons == [
        "Within your preferred price range",
        "Perfect 3-day duration for your 5-day trip",
        "Accommodates your group of 2",
        "Matches your interest in cultural activities",
        "Highly rated by other travelers",
    ]


def test_high_rating_reason_without_points():
    """Rating adds a reason but never points"""
    rated = tour(rating=4.5, price=Decimal("90000"), duration=10, max_participants=1, category="beach")
    assert scoring.match_points(rated, prefs()) == 0
    assert scoring.generate_match_reasons(rated, prefs()) == ["Highly rated by other travelers"]


def test_rank_tours_filters_weak_matches():
    """Exactly 30 points (score 0.3) is not enough"""
    only_budget = tour(duration=10, max_participants=1, category="beach")
    assert scoring.match_points(only_budget, prefs()) == 30
    assert scoring.rank_tours([only_budget], prefs()) == []


def test_rank_tours_orders_by_points_then_rating():
    best = tour()
    good_rated = tour(category="beach", rating=4.9)
    good = tour(category="beach", rating=3.0)
    ranked = scoring.rank_tours([good, best, good_rated], prefs())

    assert [r.tour for r in ranked] == [best, good_rated, good]
    assert ranked[0].score == 1.0
    assert ranked[1].score == 0.7


def test_rank_tours_ties_break_on_id():
    first = tour(id=uuid.UUID(int=1))
    second = tour(id=uuid.UUID(int=2))
    ranked = scoring.rank_tours([second, first], prefs())
    assert [r.tour for r in ranked] == [first, second]


def test_rank_tours_respects_limit():
    ranked = scoring.rank_tours([tour() for _ in range(5)], prefs(), limit=2)
    assert len(ranked) == 2


def test_clamp_limit():
    assert scoring.clamp_limit(None) == scoring.DEFAULT_RECOMMENDATION_LIMIT
    assert scoring.clamp_limit(0) == scoring.DEFAULT_RECOMMENDATION_LIMIT
    assert scoring.clamp_limit(5) == 5
    assert scoring.clamp_limit(500) == scoring.MAX_RECOMMENDATION_LIMIT
