"""
Tests for the tour catalog: browsing, creation and ownership rules
"""

from decimal import Decimal

import pytest_asyncio

from conftest import add_booking, auth_headers, make_tour, make_user
from tourbook.db.models import BookingStatus, ServiceProvider, Tour, UserType


def tour_payload(**overrides):
    payload = {
        "title": "Ella Rock Hike",
        "description": "Sunrise trek through tea estates",
        "price": 15000,
        "duration": 2,
        "max_participants": 8,
        "category": "adventure",
        "location": "Ella",
        "images": ["https://img.example.com/ella.jpg"],
        "included_services": ["Breakfast", "Guide"],
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture
async def catalog(session, provider):
    tours = [
        make_tour(provider, title="Galle Fort Walk", price=Decimal("8000"), duration=1,
                  category="cultural", location="Galle", rating=4.2),
        make_tour(provider, title="Yala Safari", price=Decimal("45000"), duration=2,
                  category="wildlife", location="Yala", rating=4.9),
        make_tour(provider, title="Mirissa Whales", price=Decimal("30000"), duration=1,
                  category="wildlife", location="Mirissa", rating=4.5),
        make_tour(provider, title="Hidden Tour", is_active=False),
    ]
    session.add_all(tours)
    await session.commit()
    return tours


@pytest_asyncio.fixture
async def rival_provider(session, password_hash):
    user = await make_user(session, "rival@example.com", UserType.PROVIDER, password_hash, "Rita Rival")
    rival = ServiceProvider(user_id=user.id, business_name="Rival Tours")
    session.add(rival)
    await session.commit()
    return user


async def test_list_tours_hides_inactive(client, catalog):
    response = await client.get("/api/tours")
    body = response.json()
    assert response.status_code == 200
    assert body["pagination"]["total"] == 3
    assert "Hidden Tour" not in [t["title"] for t in body["data"]]


async def test_list_tours_default_sort_is_rating(client, catalog):
    response = await client.get("/api/tours")
    assert [t["title"] for t in response.json()["data"]] == ["Yala Safari", "Mirissa Whales", "Galle Fort Walk"]


async def test_list_tours_filters(client, catalog):
    response = await client.get("/api/tours?category=wildlife&price_max=40000")
    assert [t["title"] for t in response.json()["data"]] == ["Mirissa Whales"]

    response = await client.get("/api/tours?search=fort")
    assert [t["title"] for t in response.json()["data"]] == ["Galle Fort Walk"]

    response = await client.get("/api/tours?location=yal")
    assert [t["title"] for t in response.json()["data"]] == ["Yala Safari"]


async def test_list_tours_sort_and_pagination(client, catalog):
    response = await client.get("/api/tours?sort=price_asc&limit=2")
    body = response.json()
    assert [t["title"] for t in body["data"]] == ["Galle Fort Walk", "Mirissa Whales"]
    assert body["pagination"] == {
        "page": 1, "limit": 2, "total": 3, "pages": 2, "hasNext": True, "hasPrev": False,
    }

    response = await client.get("/api/tours?sort=bogus")
    assert response.status_code == 400


async def test_list_tours_includes_provider_summary(client, catalog, provider):
    response = await client.get("/api/tours?limit=1")
    assert response.json()["data"][0]["provider"]["business_name"] == provider.business_name


async def test_provider_creates_own_tour(client, provider_user, provider):
    response = await client.post("/api/tours", json=tour_payload(), headers=auth_headers(provider_user))
    assert response.status_code == 201

    data = response.json()["data"]
    assert data["provider_id"] == str(provider.id)
    assert data["inclusions"] == ["Breakfast", "Guide"]
    assert data["price"] == 15000
    assert data["is_active"] is True


async def test_tourist_cannot_create_tour(client, tourist):
    response = await client.post("/api/tours", json=tour_payload(), headers=auth_headers(tourist))
    assert response.status_code == 403


async def test_provider_without_profile(client, provider_user):
    response = await client.post("/api/tours", json=tour_payload(), headers=auth_headers(provider_user))
    assert response.status_code == 400
    assert response.json()["error"] == "Provider profile not found"


async def test_admin_must_name_provider(client, admin, provider):
    response = await client.post("/api/tours", json=tour_payload(), headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "Provider ID is required"

    response = await client.post(
        "/api/tours",
        json=tour_payload(provider_id="00000000-0000-0000-0000-000000000000"),
        headers=auth_headers(admin),
    )
    assert response.status_code == 404

    response = await client.post(
        "/api/tours", json=tour_payload(provider_id=str(provider.id)), headers=auth_headers(admin)
    )
    assert response.status_code == 201


async def test_create_tour_validation(client, provider_user, provider):
    response = await client.post(
        "/api/tours",
        json=tour_payload(price=0, location="Area 51", images=["not-a-url"]),
        headers=auth_headers(provider_user),
    )
    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert fields == {"price", "location", "images"}


async def test_get_tour_detail(client, tour, provider):
    response = await client.get(f"/api/tours/{tour.id}")
    data = response.json()["data"]
    assert data["title"] == tour.title
    assert data["provider"]["id"] == str(provider.id)
    assert data["reviews"] == []


async def test_get_missing_tour(client, engine):
    response = await client.get("/api/tours/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Tour not found"}


async def test_owner_updates_tour(client, provider_user, tour):
    response = await client.put(
        f"/api/tours/{tour.id}", json={"price": 25000, "title": "Kandy Temples"}, headers=auth_headers(provider_user)
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["price"] == 25000
    assert data["title"] == "Kandy Temples"
    assert data["duration"] == tour.duration


async def test_other_provider_cannot_update(client, rival_provider, tour):
    response = await client.put(f"/api/tours/{tour.id}", json={"price": 1}, headers=auth_headers(rival_provider))
    assert response.status_code == 403
    assert response.json()["error"] == "You can only update your own tours"


async def test_admin_updates_any_tour(client, admin, tour):
    response = await client.put(f"/api/tours/{tour.id}", json={"max_participants": 10}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["data"]["max_participants"] == 10


async def test_delete_deactivates_tour(client, session, provider_user, tour):
    response = await client.delete(f"/api/tours/{tour.id}", headers=auth_headers(provider_user))
    assert response.status_code == 200

    stored = await session.get(Tour, tour.id, populate_existing=True)
    assert stored is not None
    assert stored.is_active is False

    response = await client.get(f"/api/tours/{tour.id}")
    assert response.status_code == 404


async def test_delete_tour_with_active_bookings(client, session, provider_user, tourist, tour):
    await add_booking(session, tourist, tour, status=BookingStatus.PENDING)
    response = await client.delete(f"/api/tours/{tour.id}", headers=auth_headers(provider_user))
    assert response.status_code == 400
    assert response.json()["error"] == "Cannot delete tour with active bookings"


async def test_other_provider_cannot_delete(client, rival_provider, tour):
    response = await client.delete(f"/api/tours/{tour.id}", headers=auth_headers(rival_provider))
    assert response.status_code == 403
    assert response.json()["error"] == "You can only delete your own tours"
