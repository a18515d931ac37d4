"""
Tests for card payments: intent creation, lookup and confirmation
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from fastapi import HTTPException
from sqlalchemy import func, select

from conftest import add_booking, auth_headers, future_day
from tourbook.core.validation import start_of_today
from tourbook.db.models import Booking, BookingStatus, PaymentIntent, PaymentIntentStatus, PaymentStatus
from tourbook.services import payments as gateway


def intent_payload(tour, participants=2, amount=40000, booking_date=None):
    return {
        "tour_id": str(tour.id),
        "participants": participants,
        "booking_date": (booking_date or future_day()).isoformat(),
        "amount": amount,
    }


def gateway_intent(intent_id="pi_123", status="requires_payment_method"):
    return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret_abc", status=status)


async def store_intent(session, user, tour, intent_id="pi_123", participants=2):
    intent = PaymentIntent(
        id=intent_id,
        user_id=user.id,
        tour_id=tour.id,
        amount=tour.price * participants,
        currency="lkr",
        participants=participants,
        booking_date=future_day(),
    )
    session.add(intent)
    await session.commit()
    return intent


def test_minor_units():
    assert gateway.to_minor_units(40000) == 4000000
    assert gateway.to_minor_units(19.99) == 1999
    assert gateway.from_minor_units(4000000) == 40000


async def test_gateway_create_sends_minor_units():
    with patch.object(stripe.PaymentIntent, "create", return_value=gateway_intent()) as create:
        intent = await gateway.create_payment_intent(400.5, metadata={"participants": "2"})

    assert intent.id == "pi_123"
    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 40050
    assert kwargs["currency"] == "lkr"
    assert kwargs["payment_method_types"] == ["card"]
    assert kwargs["capture_method"] == "automatic"


async def test_gateway_card_error_is_payment_required():
    declined = stripe.CardError("Your card was declined.", None, "card_declined")
    with patch.object(stripe.PaymentIntent, "create", side_effect=declined):
        with pytest.raises(HTTPException) as exc_info:
            await gateway.create_payment_intent(100, metadata={})

    assert exc_info.value.status_code == 402
    assert exc_info.value.detail == "Your card was declined."


async def test_gateway_outage_is_bad_gateway():
    with patch.object(stripe.PaymentIntent, "retrieve", side_effect=stripe.APIConnectionError("Network down")):
        with pytest.raises(HTTPException) as exc_info:
            await gateway.retrieve_payment_intent("pi_123")

    assert exc_info.value.status_code == 502
    assert exc_info.value.detail == "Network down"


async def test_create_intent_stores_record(client, session, tourist, tour):
    create = AsyncMock(return_value=gateway_intent())
    with patch("tourbook.services.payments.create_payment_intent", create):
        response = await client.post("/api/payments/intent", json=intent_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data == {
        "client_secret": "pi_123_secret_abc",
        "payment_intent_id": "pi_123",
        "amount": 40000,
        "currency": "LKR",
    }

    metadata = create.call_args.kwargs["metadata"]
    assert metadata["tour_id"] == str(tour.id)
    assert metadata["user_id"] == str(tourist.id)
    assert metadata["participants"] == "2"

    stored = await session.get(PaymentIntent, "pi_123")
    assert stored.status == PaymentIntentStatus.PENDING
    assert stored.amount == Decimal("40000.00")
    assert stored.intent_metadata["tour_title"] == tour.title


async def test_create_intent_amount_mismatch(client, tourist, tour):
    with patch("tourbook.services.payments.create_payment_intent", AsyncMock()) as create:
        response = await client.post(
            "/api/payments/intent", json=intent_payload(tour, amount=39999), headers=auth_headers(tourist)
        )
    assert response.status_code == 400
    assert response.json()["error"] == "Amount mismatch. Please refresh and try again."
    create.assert_not_awaited()


async def test_create_intent_rules(client, tourist, tour):
    response = await client.post(
        "/api/payments/intent", json=intent_payload(tour, participants=5, amount=100000), headers=auth_headers(tourist)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Maximum 4 participants allowed for this tour"

    yesterday = start_of_today().replace(hour=12) - timedelta(days=1)
    response = await client.post(
        "/api/payments/intent", json=intent_payload(tour, booking_date=yesterday), headers=auth_headers(tourist)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Booking date cannot be in the past"


async def test_create_intent_checks_remaining_seats(client, session, tourist, other_tourist, tour):
    await add_booking(session, other_tourist, tour, participants=3, status=BookingStatus.PENDING)

    with patch("tourbook.services.payments.create_payment_intent", AsyncMock()) as create:
        response = await client.post("/api/payments/intent", json=intent_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 400
    assert response.json()["error"] == "Only 1 spots available for this date"
    create.assert_not_awaited()


async def test_create_intent_missing_tour(client, tourist, tour):
    payload = intent_payload(tour)
    payload["tour_id"] = "00000000-0000-0000-0000-000000000000"
    response = await client.post("/api/payments/intent", json=payload, headers=auth_headers(tourist))
    assert response.status_code == 404


async def test_create_intent_declined(client, tourist, tour):
    declined = stripe.CardError("Your card was declined.", None, "card_declined")
    with patch.object(stripe.PaymentIntent, "create", side_effect=declined):
        response = await client.post("/api/payments/intent", json=intent_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 402
    assert response.json() == {"success": False, "error": "Your card was declined."}


async def test_get_intent_requires_id(client, tourist):
    response = await client.get("/api/payments/intent", headers=auth_headers(tourist))
    assert response.status_code == 400
    assert response.json()["error"] == "Payment intent ID required"


async def test_get_intent_with_live_status(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    with patch("tourbook.services.payments.retrieve_payment_intent", AsyncMock(return_value=gateway_intent(status="succeeded"))):
        response = await client.get("/api/payments/intent?payment_intent_id=pi_123", headers=auth_headers(tourist))

    data = response.json()["data"]
    assert response.status_code == 200
    assert data["status"] == "pending"
    assert data["gateway_status"] == "succeeded"


async def test_get_intent_when_gateway_down(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    outage = AsyncMock(side_effect=HTTPException(status_code=502, detail="Network down"))
    with patch("tourbook.services.payments.retrieve_payment_intent", outage):
        response = await client.get("/api/payments/intent?payment_intent_id=pi_123", headers=auth_headers(tourist))

    assert response.status_code == 200
    assert response.json()["data"]["gateway_status"] is None


async def test_get_intent_of_another_user(client, session, tourist, other_tourist, tour):
    await store_intent(session, other_tourist, tour)
    response = await client.get("/api/payments/intent?payment_intent_id=pi_123", headers=auth_headers(tourist))
    assert response.status_code == 404


def confirm_payload(tour, intent_id="pi_123"):
    return {
        "payment_intent_id": intent_id,
        "booking_data": {
            "tour_id": str(tour.id),
            "participants": 2,
            "booking_date": future_day().isoformat(),
            "special_requests": "Window seats please",
        },
    }


async def test_confirm_creates_paid_booking(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    succeeded = AsyncMock(return_value=gateway_intent(status="succeeded"))
    with patch("tourbook.services.payments.retrieve_payment_intent", succeeded):
        response = await client.post("/api/payments/confirm", json=confirm_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 201
    data = response.json()["data"]
    booking = data["booking"]
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "paid"
    assert booking["total_amount"] == 40000
    assert booking["payment_intent_id"] == "pi_123"
    assert data["confirmation_number"] == booking["confirmation_number"]
    assert data["confirmation_number"].startswith("AC")

    stored = await session.get(PaymentIntent, "pi_123", populate_existing=True)
    assert stored.status == PaymentIntentStatus.SUCCEEDED
    assert str(stored.booking_id) == booking["id"]


async def test_confirm_twice_conflicts(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    await add_booking(session, tourist, tour, payment_intent_id="pi_123", payment_status=PaymentStatus.PAID)

    succeeded = AsyncMock(return_value=gateway_intent(status="succeeded"))
    with patch("tourbook.services.payments.retrieve_payment_intent", succeeded):
        response = await client.post("/api/payments/confirm", json=confirm_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 409
    assert response.json()["error"] == "Booking already exists for this payment"


async def test_confirm_unfinished_payment(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    pending = AsyncMock(return_value=gateway_intent(status="requires_payment_method"))
    with patch("tourbook.services.payments.retrieve_payment_intent", pending):
        response = await client.post("/api/payments/confirm", json=confirm_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 400
    assert response.json()["error"] == "Payment not completed"


async def test_confirm_someone_elses_payment(client, session, tourist, other_tourist, tour):
    await store_intent(session, other_tourist, tour)
    succeeded = AsyncMock(return_value=gateway_intent(status="succeeded"))
    with patch("tourbook.services.payments.retrieve_payment_intent", succeeded):
        response = await client.post("/api/payments/confirm", json=confirm_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 404


async def test_confirm_with_mismatched_tour(client, session, tourist, tour):
    await store_intent(session, tourist, tour)
    payload = confirm_payload(tour)
    payload["booking_data"]["tour_id"] = "00000000-0000-0000-0000-000000000000"

    succeeded = AsyncMock(return_value=gateway_intent(status="succeeded"))
    with patch("tourbook.services.payments.retrieve_payment_intent", succeeded):
        response = await client.post("/api/payments/confirm", json=payload, headers=auth_headers(tourist))

    assert response.status_code == 400
    count = await session.execute(select(func.count(Booking.id)))
    assert count.scalar_one() == 0


async def test_confirm_refuses_sold_out_date(client, session, tourist, other_tourist, tour):
    """Seats taken after the intent was created are not oversold"""
    await store_intent(session, tourist, tour)
    await add_booking(session, other_tourist, tour, participants=4, status=BookingStatus.PENDING)

    succeeded = AsyncMock(return_value=gateway_intent(status="succeeded"))
    with patch("tourbook.services.payments.retrieve_payment_intent", succeeded):
        response = await client.post("/api/payments/confirm", json=confirm_payload(tour), headers=auth_headers(tourist))

    assert response.status_code == 400
    assert response.json()["error"] == "Only 0 spots available for this date"

    held = await session.execute(select(func.sum(Booking.participants)).where(Booking.tour_id == tour.id))
    assert held.scalar_one() == 4
    stored = await session.get(PaymentIntent, "pi_123", populate_existing=True)
    assert stored.booking_id is None
