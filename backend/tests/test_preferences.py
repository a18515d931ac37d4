"""
Tests for the preference questionnaire and tour recommendations
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest_asyncio
from sqlalchemy.exc import OperationalError

from conftest import auth_headers, make_tour
from tourbook.api.preferences import recommend_tours
from tourbook.api.schemas import PreferencesRead
from tourbook.core import scoring
from tourbook.db import crud

PREFERENCES = {
    "budget_range": "mid_range",
    "preferred_activities": ["cultural"],
    "accommodation_type": "hotel",
    "group_size": 2,
    "travel_duration": 5,
}


@pytest_asyncio.fixture
async def saved_preferences(session, tourist):
    return await crud.upsert_preferences(session, tourist.id, dict(PREFERENCES))


@pytest_asyncio.fixture
async def mixed_catalog(session, provider):
    tours = [
        # 100 points
        make_tour(provider, title="Perfect Match", rating=4.0),
        # 70 points, two of them tied on points and split by rating
        make_tour(provider, title="Beach Low", category="beach", rating=3.0),
        make_tour(provider, title="Beach High", category="beach", rating=4.7),
        # 30 points, filtered out
        make_tour(provider, title="Budget Only", duration=9, max_participants=1, category="beach"),
        # 0 points
        make_tour(provider, title="Nothing", price=Decimal("90000"), duration=9, max_participants=1,
                  category="beach"),
        make_tour(provider, title="Inactive Match", is_active=False),
    ]
    session.add_all(tours)
    await session.commit()
    return tours


async def test_get_preferences_when_none(client, tourist):
    response = await client.get("/api/preferences", headers=auth_headers(tourist))
    body = response.json()
    assert response.status_code == 200
    assert body["data"] is None
    assert body["message"] == "No preferences found"


async def test_save_preferences_upserts(client, tourist):
    response = await client.post("/api/preferences", json=PREFERENCES, headers=auth_headers(tourist))
    assert response.status_code == 200
    first = response.json()["data"]
    assert first["group_size"] == 2
    assert first["dietary_restrictions"] == []

    response = await client.post(
        "/api/preferences", json={**PREFERENCES, "group_size": 4}, headers=auth_headers(tourist)
    )
    second = response.json()["data"]
    assert second["id"] == first["id"]
    assert second["group_size"] == 4


async def test_save_preferences_validation(client, tourist):
    response = await client.post(
        "/api/preferences",
        json={**PREFERENCES, "group_size": 51, "preferred_activities": []},
        headers=auth_headers(tourist),
    )
    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert fields == {"group_size", "preferred_activities"}


async def test_update_preferences(client, tourist, saved_preferences):
    response = await client.put(
        "/api/preferences", json={"travel_duration": 10}, headers=auth_headers(tourist)
    )
    data = response.json()["data"]
    assert response.status_code == 200
    assert data["travel_duration"] == 10
    assert data["budget_range"] == "mid_range"


async def test_update_missing_preferences(client, tourist):
    response = await client.put("/api/preferences", json={"group_size": 3}, headers=auth_headers(tourist))
    assert response.status_code == 404


async def test_delete_preferences(client, tourist, saved_preferences):
    response = await client.delete("/api/preferences", headers=auth_headers(tourist))
    assert response.status_code == 200

    response = await client.get("/api/preferences", headers=auth_headers(tourist))
    assert response.json()["data"] is None


async def test_recommendations_need_preferences(client, tourist):
    response = await client.get("/api/preferences/recommendations", headers=auth_headers(tourist))
    assert response.status_code == 404
    assert "preference questionnaire" in response.json()["error"]


async def test_recommendations_ranked(client, tourist, saved_preferences, mixed_catalog):
    response = await client.get("/api/preferences/recommendations", headers=auth_headers(tourist))
    assert response.status_code == 200

    data = response.json()["data"]
    titles = [r["tour"]["title"] for r in data["recommendations"]]
    assert titles == ["Perfect Match", "Beach High", "Beach Low"]
    assert [r["match_score"] for r in data["recommendations"]] == [1.0, 0.7, 0.7]
    assert data["total"] == 3
    assert data["preferences"]["budget_range"] == "mid_range"

    reasons = data["recommendations"][1]["reasons"]
    assert "Highly rated by other travelers" in reasons
    assert "Matches your interest in cultural activities" not in reasons


async def test_recommendations_limit(client, tourist, saved_preferences, mixed_catalog):
    response = await client.get("/api/preferences/recommendations?limit=1", headers=auth_headers(tourist))
    assert [r["tour"]["title"] for r in response.json()["data"]["recommendations"]] == ["Perfect Match"]


async def test_database_and_in_process_rankings_agree(session, saved_preferences, mixed_catalog):
    prefs = PreferencesRead.model_validate(saved_preferences)

    in_database = await crud.recommended_tours(session, prefs, 10)
    in_process = scoring.rank_tours(await crud.list_active_tours_with_provider(session), prefs, 10)

    assert [(t.id, points) for t, points in in_database] == [(s.tour.id, s.points) for s in in_process]


async def test_recommendations_fall_back_when_query_fails(session, saved_preferences, mixed_catalog):
    prefs = PreferencesRead.model_validate(saved_preferences)
    failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("no such function")))

    with patch("tourbook.api.preferences.crud.recommended_tours", failing):
        ranked = await recommend_tours(session, prefs, 10)

    failing.assert_awaited_once()
    assert [r.tour.title for r in ranked] == ["Perfect Match", "Beach High", "Beach Low"]
    assert ranked[0].reasons[0] == "Within your preferred price range"


async def test_recommendations_endpoint_survives_query_failure(client, tourist, saved_preferences, mixed_catalog):
    failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("boom")))
    with patch("tourbook.api.preferences.crud.recommended_tours", failing):
        response = await client.get("/api/preferences/recommendations", headers=auth_headers(tourist))

    assert response.status_code == 200
    assert response.json()["data"]["total"] == 3
