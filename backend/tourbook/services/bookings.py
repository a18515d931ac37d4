"""
Booking lifecycle: create, modify and cancel a traveller's booking.

States run pending -> confirmed -> completed, with cancelled and
disputed as the other terminal states. Creation locks the tour row so
that concurrent requests for the same tour are checked against capacity
one at a time.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.validation import ensure_utc, start_of_today
from tourbook.db import crud
from tourbook.db.models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, PaymentStatus, Tour

logger = logging.getLogger(__name__)

CANCELLATION_WINDOW = timedelta(hours=24)
CONFIRMATION_ALPHABET = string.ascii_uppercase + string.digits


def generate_confirmation_number() -> str:
    """AC + last 8 digits of the epoch millis + 4 random characters"""
    millis = str(int(time.time() * 1000))[-8:]
    suffix = "".join(secrets.choice(CONFIRMATION_ALPHABET) for _ in range(4))
    return f"AC{millis}{suffix}"


def compute_total(price: Decimal, participants: int) -> Decimal:
    return Decimal(price) * participants


def cancellation_deadline(booking_date: datetime) -> datetime:
    return ensure_utc(booking_date) - CANCELLATION_WINDOW


class BookingService:
    """Booking state changes for one request's session"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _lock_tour(self, tour_id: UUID) -> Optional[Tour]:
        result = await self.session.execute(
            select(Tour).where(Tour.id == tour_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def check_capacity(self, tour: Tour, participants: int, booking_date: datetime,
                             exclude_booking_id: Optional[UUID] = None) -> None:
        if participants > tour.max_participants:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Tour can only accommodate {tour.max_participants} participants",
            )

        booked = await crud.booked_participants(
            self.session, tour.id, booking_date, exclude_booking_id=exclude_booking_id
        )
        remaining = tour.max_participants - booked
        if participants > remaining:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Only {max(remaining, 0)} spots available for this date",
            )

    async def create_booking(
        self,
        user_id: UUID,
        tour_id: UUID,
        participants: int,
        booking_date: datetime,
        special_requests: Optional[str] = None,
        contact_info: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """Reserve places on a tour date as a pending booking"""
        try:
            tour = await self._lock_tour(tour_id)
            if not tour or not tour.is_active:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Tour not found or not available",
                )

            await self.check_capacity(tour, participants, booking_date)

            booking = Booking(
                user_id=user_id,
                tour_id=tour.id,
                participants=participants,
                booking_date=ensure_utc(booking_date),
                total_amount=compute_total(tour.price, participants),
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                special_requests=special_requests,
                contact_info=contact_info,
            )
            self.session.add(booking)
            await self.session.commit()
            logger.info(f"Created booking {booking.id} for tour {tour.id} ({participants} participants)")
            return await crud.get_booking(self.session, booking.id)
        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error creating booking for tour {tour_id}: {e}")
            raise

    async def create_paid_booking(
        self,
        user_id: UUID,
        tour_id: UUID,
        participants: int,
        booking_date: datetime,
        total_amount: Decimal,
        payment_intent_id: str,
        special_requests: Optional[str] = None,
    ) -> Booking:
        """Record a booking whose payment has already succeeded.

        The tour is locked and re-checked for capacity, since seats may have
        gone between creating the payment intent and confirming it.
        """
        try:
            tour = await self._lock_tour(tour_id)
            if not tour:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour not found")

            await self.check_capacity(tour, participants, booking_date)

            booking = Booking(
                user_id=user_id,
                tour_id=tour.id,
                participants=participants,
                booking_date=ensure_utc(booking_date),
                total_amount=total_amount,
                status=BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
                payment_intent_id=payment_intent_id,
                confirmation_number=generate_confirmation_number(),
                special_requests=special_requests,
            )
            self.session.add(booking)
            await self.session.flush()
            logger.info(f"Created paid booking {booking.id} for intent {payment_intent_id}")
            return booking
        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error creating paid booking for intent {payment_intent_id}: {e}")
            raise

    async def update_booking(self, booking: Booking, changes: Dict[str, Any]) -> Booking:
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot modify completed or cancelled bookings",
            )

        new_date = changes.get("booking_date")
        if new_date is not None and ensure_utc(new_date) < start_of_today():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot modify booking date to a past date",
            )

        booking_id = booking.id
        try:
            participants = changes.get("participants") or booking.participants
            date_changed = new_date is not None and ensure_utc(new_date) != ensure_utc(booking.booking_date)

            if participants != booking.participants or date_changed:
                tour = await self._lock_tour(booking.tour_id)
                await self.check_capacity(
                    tour, participants, new_date or booking.booking_date, exclude_booking_id=booking.id
                )
                if participants != booking.participants:
                    booking.total_amount = compute_total(tour.price, participants)
                booking.participants = participants

            if new_date is not None:
                booking.booking_date = ensure_utc(new_date)
            if "special_requests" in changes:
                booking.special_requests = changes["special_requests"]
            if changes.get("contact_info"):
                merged = dict(booking.contact_info or {})
                merged.update({k: v for k, v in changes["contact_info"].items() if v is not None})
                booking.contact_info = merged

            await self.session.commit()
            logger.info(f"Updated booking {booking.id}")
            return await crud.get_booking(self.session, booking.id)
        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error updating booking {booking_id}: {e}")
            raise

    async def cancel_booking(self, booking: Booking, now: Optional[datetime] = None) -> Booking:
        if booking.status == BookingStatus.COMPLETED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot cancel completed bookings")
        if booking.status == BookingStatus.CANCELLED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking is already cancelled")

        now = now or datetime.now(timezone.utc)
        if now > cancellation_deadline(booking.booking_date):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot cancel booking less than 24 hours before the tour date",
            )

        booking_id = booking.id
        try:
            booking.payment_status = (
                PaymentStatus.REFUNDED if booking.payment_status == PaymentStatus.PAID else PaymentStatus.CANCELLED
            )
            booking.status = BookingStatus.CANCELLED
            await self.session.commit()
            logger.info(f"Cancelled booking {booking.id}")
            return await crud.get_booking(self.session, booking.id)
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error cancelling booking {booking_id}: {e}")
            raise
