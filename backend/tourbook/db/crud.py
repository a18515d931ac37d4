"""
Query helpers for the marketplace tables
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tourbook.core.scoring import MIN_RECOMMENDED_POINTS, match_points_expression
from tourbook.core.validation import ensure_utc
from tourbook.db.models import (
    ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, PaymentIntent, ProviderAmenity,
    ProviderService, Review, ServiceProvider, Tour, User, UserPreferences, UserType,
)

logger = logging.getLogger(__name__)

TOUR_SORTS = {
    "price_asc": (Tour.price.asc(),),
    "price_desc": (Tour.price.desc(),),
    "duration_asc": (Tour.duration.asc(),),
    "duration_desc": (Tour.duration.desc(),),
    "newest": (Tour.created_at.desc(),),
    "rating": (Tour.rating.desc(), Tour.created_at.desc()),
}


async def _count(session: AsyncSession, stmt) -> int:
    result = await session.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))
    return result.scalar_one()


# ===== USER CRUD OPERATIONS =====

async def get_user_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    email: str,
    full_name: str,
    password_hash: str,
    user_type: UserType = UserType.TOURIST,
    phone: Optional[str] = None,
    country: Optional[str] = None,
) -> User:
    try:
        user = User(
            email=email.strip().lower(),
            full_name=full_name,
            password_hash=password_hash,
            user_type=user_type,
            phone=phone,
            country=country,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info(f"Created {user_type.value} user: {user.id}")
        return user
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating user: {e}")
        raise


async def admin_exists(session: AsyncSession) -> bool:
    result = await session.execute(select(exists().where(User.user_type == UserType.ADMIN)))
    return bool(result.scalar())


async def list_users(
    session: AsyncSession,
    search: Optional[str] = None,
    user_type: Optional[str] = None,
    exclude_providers: bool = True,
    offset: int = 0,
    limit: int = 50,
) -> Tuple[List[User], int]:
    stmt = select(User)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    if user_type and user_type != "all":
        stmt = stmt.where(User.user_type == UserType(user_type))
    if exclude_providers:
        stmt = stmt.where(~exists().where(ServiceProvider.user_id == User.id))

    total = await _count(session, stmt)
    result = await session.execute(stmt.order_by(User.created_at.desc()).offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def get_user_profile(session: AsyncSession, user_id: UUID) -> Optional[User]:
    result = await session.execute(
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.preferences), selectinload(User.provider_profile))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_booking_stats(session: AsyncSession, user_id: UUID) -> Dict[str, Any]:
    result = await session.execute(
        select(Booking.status, func.count(Booking.id), func.coalesce(func.sum(Booking.total_amount), 0))
        .where(Booking.user_id == user_id)
        .group_by(Booking.status)
    )
    stats = {"total_bookings": 0, "confirmed_bookings": 0, "completed_bookings": 0, "total_spent": 0.0}
    for status_value, count, amount in result.all():
        stats["total_bookings"] += count
        stats["total_spent"] += float(amount or 0)
        if status_value == BookingStatus.CONFIRMED:
            stats["confirmed_bookings"] = count
        elif status_value == BookingStatus.COMPLETED:
            stats["completed_bookings"] = count
    return stats


async def count_active_bookings_for_user(session: AsyncSession, user_id: UUID) -> int:
    result = await session.execute(
        select(func.count(Booking.id)).where(
            Booking.user_id == user_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return result.scalar_one()


async def delete_user_account(session: AsyncSession, user: User) -> None:
    """Remove a user and everything that belongs to them.

    A provider profile goes too; its tours stay in the catalog without
    a provider and reviews left for it lose the provider link.
    """
    user_id = user.id
    try:
        provider = await get_provider_by_user(session, user_id)
        if provider is not None:
            await session.execute(update(Tour).where(Tour.provider_id == provider.id).values(provider_id=None))
            await session.execute(update(Review).where(Review.provider_id == provider.id).values(provider_id=None))
            await session.execute(delete(ProviderService).where(ProviderService.provider_id == provider.id))
            await session.execute(delete(ProviderAmenity).where(ProviderAmenity.provider_id == provider.id))
            await session.execute(delete(ServiceProvider).where(ServiceProvider.id == provider.id))

        await session.execute(delete(Review).where(Review.user_id == user_id))
        await session.execute(delete(PaymentIntent).where(PaymentIntent.user_id == user_id))
        await session.execute(delete(Booking).where(Booking.user_id == user_id))
        await session.execute(delete(UserPreferences).where(UserPreferences.user_id == user_id))
        await session.execute(delete(User).where(User.id == user_id))
        await session.commit()
        logger.info(f"Deleted user account: {user_id}")
    except Exception as e:
        await session.rollback()
        logger.error(f"Error deleting user {user_id}: {e}")
        raise


# ===== PREFERENCE CRUD OPERATIONS =====

async def get_preferences(session: AsyncSession, user_id: UUID) -> Optional[UserPreferences]:
    result = await session.execute(select(UserPreferences).where(UserPreferences.user_id == user_id))
    return result.scalar_one_or_none()


async def upsert_preferences(session: AsyncSession, user_id: UUID, values: Dict[str, Any]) -> UserPreferences:
    """Create the user's preferences or replace them wholesale"""
    try:
        prefs = await get_preferences(session, user_id)
        if prefs is None:
            prefs = UserPreferences(user_id=user_id, **values)
            session.add(prefs)
        else:
            for key, value in values.items():
                setattr(prefs, key, value)
        await session.commit()
        await session.refresh(prefs)
        return prefs
    except Exception as e:
        await session.rollback()
        logger.error(f"Error saving preferences for user {user_id}: {e}")
        raise


async def update_preferences(session: AsyncSession, prefs: UserPreferences, values: Dict[str, Any]) -> UserPreferences:
    prefs_id = prefs.id
    try:
        for key, value in values.items():
            setattr(prefs, key, value)
        await session.commit()
        await session.refresh(prefs)
        return prefs
    except Exception as e:
        await session.rollback()
        logger.error(f"Error updating preferences {prefs_id}: {e}")
        raise


async def delete_preferences(session: AsyncSession, user_id: UUID) -> None:
    await session.execute(delete(UserPreferences).where(UserPreferences.user_id == user_id))
    await session.commit()


# ===== PROVIDER CRUD OPERATIONS =====

async def get_provider(session: AsyncSession, provider_id: UUID) -> Optional[ServiceProvider]:
    return await session.get(ServiceProvider, provider_id)


async def get_provider_by_user(session: AsyncSession, user_id: UUID) -> Optional[ServiceProvider]:
    result = await session.execute(select(ServiceProvider).where(ServiceProvider.user_id == user_id))
    return result.scalar_one_or_none()


async def get_first_active_provider(session: AsyncSession) -> Optional[ServiceProvider]:
    result = await session.execute(
        select(ServiceProvider)
        .where(ServiceProvider.is_active.is_(True))
        .order_by(ServiceProvider.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_providers(
    session: AsyncSession,
    search: Optional[str] = None,
    business_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    offset: int = 0,
    limit: int = 10,
) -> Tuple[List[ServiceProvider], int]:
    stmt = select(ServiceProvider)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            ServiceProvider.business_name.ilike(pattern),
            ServiceProvider.email.ilike(pattern),
            ServiceProvider.city.ilike(pattern),
        ))
    if business_type and business_type != "all":
        stmt = stmt.where(ServiceProvider.business_type == business_type)
    if is_active is not None:
        stmt = stmt.where(ServiceProvider.is_active.is_(is_active))

    total = await _count(session, stmt)
    result = await session.execute(
        stmt.options(selectinload(ServiceProvider.user))
        .order_by(ServiceProvider.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def create_provider(
    session: AsyncSession,
    user: User,
    values: Dict[str, Any],
    services: Sequence[Dict[str, Any]] = (),
    amenities: Sequence[str] = (),
) -> ServiceProvider:
    """Create a provider profile and promote a tourist owner to provider.

    Services and amenities are written in a savepoint: if that part
    fails it is logged and rolled back on its own, and the profile is
    still created.
    """
    user_id = user.id
    try:
        provider = ServiceProvider(user_id=user_id, is_active=True, **values)
        session.add(provider)
        await session.flush()

        if services or amenities:
            try:
                async with session.begin_nested():
                    for service in services:
                        session.add(ProviderService(provider_id=provider.id, **service))
                    for amenity in amenities:
                        session.add(ProviderAmenity(provider_id=provider.id, name=amenity))
            except Exception as e:
                logger.error(f"Provider services/amenities insert failed for {provider.id}: {e}")

        if user.user_type == UserType.TOURIST:
            user.user_type = UserType.PROVIDER

        await session.commit()
        await session.refresh(provider)
        logger.info(f"Created service provider {provider.id} for user {user_id}")
        return provider
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating provider for user {user_id}: {e}")
        raise


async def set_provider_active(session: AsyncSession, provider: ServiceProvider, is_active: bool) -> ServiceProvider:
    provider.is_active = is_active
    await session.commit()
    await session.refresh(provider)
    return provider


# ===== TOUR CRUD OPERATIONS =====

async def list_tours(
    session: AsyncSession,
    category: Optional[str] = None,
    location: Optional[str] = None,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    duration: Optional[int] = None,
    search: Optional[str] = None,
    sort: str = "rating",
    offset: int = 0,
    limit: int = 12,
) -> Tuple[List[Tour], int]:
    stmt = select(Tour).where(Tour.is_active.is_(True))
    if category:
        stmt = stmt.where(Tour.category == category)
    if location:
        stmt = stmt.where(Tour.location.ilike(f"%{location}%"))
    if price_min is not None:
        stmt = stmt.where(Tour.price >= price_min)
    if price_max is not None:
        stmt = stmt.where(Tour.price <= price_max)
    if duration is not None:
        stmt = stmt.where(Tour.duration <= duration)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Tour.title.ilike(pattern), Tour.description.ilike(pattern)))

    total = await _count(session, stmt)
    order = TOUR_SORTS.get(sort, TOUR_SORTS["rating"])
    result = await session.execute(
        stmt.options(selectinload(Tour.provider)).order_by(*order).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def get_tour(session: AsyncSession, tour_id: UUID, active_only: bool = True) -> Optional[Tour]:
    stmt = select(Tour).where(Tour.id == tour_id).options(selectinload(Tour.provider))
    if active_only:
        stmt = stmt.where(Tour.is_active.is_(True))
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_tour_detail(session: AsyncSession, tour_id: UUID) -> Optional[Tour]:
    result = await session.execute(
        select(Tour)
        .where(Tour.id == tour_id, Tour.is_active.is_(True))
        .options(
            selectinload(Tour.provider),
            selectinload(Tour.reviews).selectinload(Review.user),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_tour(session: AsyncSession, values: Dict[str, Any]) -> Tour:
    try:
        tour = Tour(**values)
        session.add(tour)
        await session.commit()
        logger.info(f"Created tour {tour.id}: {tour.title}")
        return await get_tour(session, tour.id, active_only=False)
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating tour: {e}")
        raise


async def update_tour(session: AsyncSession, tour: Tour, values: Dict[str, Any]) -> Tour:
    tour_id = tour.id
    try:
        for key, value in values.items():
            setattr(tour, key, value)
        await session.commit()
        return await get_tour(session, tour.id, active_only=False)
    except Exception as e:
        await session.rollback()
        logger.error(f"Error updating tour {tour_id}: {e}")
        raise


async def count_active_bookings_for_tour(session: AsyncSession, tour_id: UUID) -> int:
    result = await session.execute(
        select(func.count(Booking.id)).where(
            Booking.tour_id == tour_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return result.scalar_one()


async def count_active_bookings(session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count(Booking.id)).where(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
    )
    return result.scalar_one()


async def count_tours(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(Tour.id)))
    return result.scalar_one()


async def insert_tours(session: AsyncSession, rows: Sequence[Dict[str, Any]]) -> List[Tour]:
    try:
        tours = [Tour(**row) for row in rows]
        session.add_all(tours)
        await session.commit()
        return tours
    except Exception as e:
        await session.rollback()
        logger.error(f"Error inserting tours: {e}")
        raise


async def delete_all_tours(session: AsyncSession) -> int:
    """Wipe the catalog along with its booking history, reviews and intents.

    Callers check first that no pending or confirmed booking remains.
    """
    try:
        await session.execute(delete(Review))
        await session.execute(delete(PaymentIntent))
        await session.execute(delete(Booking))
        result = await session.execute(delete(Tour))
        await session.commit()
        return result.rowcount or 0
    except Exception as e:
        await session.rollback()
        logger.error(f"Error deleting tours: {e}")
        raise


async def list_active_tours_with_provider(session: AsyncSession) -> List[Tour]:
    result = await session.execute(
        select(Tour)
        .where(Tour.is_active.is_(True))
        .options(selectinload(Tour.provider))
        .order_by(Tour.rating.desc())
    )
    return list(result.scalars().all())


async def recommended_tours(session: AsyncSession, prefs: UserPreferences, limit: int) -> List[Tuple[Tour, int]]:
    """Database-side scoring: (tour, points) best first"""
    points = match_points_expression(Tour, prefs).label("match_points")
    result = await session.execute(
        select(Tour, points)
        .where(Tour.is_active.is_(True), points > MIN_RECOMMENDED_POINTS)
        .options(selectinload(Tour.provider))
        .order_by(points.desc(), Tour.rating.desc(), Tour.id.asc())
        .limit(limit)
    )
    return [(tour, int(tour_points)) for tour, tour_points in result.all()]


# ===== BOOKING CRUD OPERATIONS =====

def _booking_options(with_review: bool = False):
    options = [selectinload(Booking.tour).selectinload(Tour.provider)]
    if with_review:
        options.append(selectinload(Booking.review))
    return options


async def get_booking(session: AsyncSession, booking_id: UUID, user_id: Optional[UUID] = None,
                      with_review: bool = False) -> Optional[Booking]:
    stmt = select(Booking).where(Booking.id == booking_id).options(*_booking_options(with_review))
    if user_id is not None:
        stmt = stmt.where(Booking.user_id == user_id)
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def list_bookings_for_user(
    session: AsyncSession,
    user_id: UUID,
    status: Optional[str] = None,
    offset: int = 0,
    limit: int = 10,
) -> Tuple[List[Booking], int]:
    stmt = select(Booking).where(Booking.user_id == user_id)
    if status:
        stmt = stmt.where(Booking.status == BookingStatus(status))

    total = await _count(session, stmt)
    result = await session.execute(
        stmt.options(*_booking_options()).order_by(Booking.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    start = ensure_utc(moment).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


async def booked_participants(session: AsyncSession, tour_id: UUID, booking_date: datetime,
                              exclude_booking_id: Optional[UUID] = None) -> int:
    """Participants holding capacity on the tour for that calendar day"""
    start, end = day_bounds(booking_date)
    stmt = select(func.coalesce(func.sum(Booking.participants), 0)).where(
        Booking.tour_id == tour_id,
        Booking.booking_date >= start,
        Booking.booking_date < end,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def get_booking_by_payment_intent(session: AsyncSession, payment_intent_id: str) -> Optional[Booking]:
    result = await session.execute(select(Booking).where(Booking.payment_intent_id == payment_intent_id))
    return result.scalars().first()


# ===== REVIEW CRUD OPERATIONS =====

async def list_reviews(
    session: AsyncSession,
    tour_id: Optional[UUID] = None,
    provider_id: Optional[UUID] = None,
    rating_min: Optional[int] = None,
    verified: Optional[bool] = None,
    offset: int = 0,
    limit: int = 10,
) -> Tuple[List[Review], int]:
    stmt = select(Review)
    if tour_id:
        stmt = stmt.where(Review.tour_id == tour_id)
    if provider_id:
        stmt = stmt.where(Review.provider_id == provider_id)
    if rating_min is not None:
        stmt = stmt.where(Review.rating >= rating_min)
    if verified is not None:
        stmt = stmt.where(Review.is_verified.is_(verified))

    total = await _count(session, stmt)
    result = await session.execute(
        stmt.options(selectinload(Review.user)).order_by(Review.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def review_exists_for_booking(session: AsyncSession, booking_id: UUID) -> bool:
    result = await session.execute(select(exists().where(Review.booking_id == booking_id)))
    return bool(result.scalar())


async def _rating_rollup(session: AsyncSession, column, target_id: UUID) -> Tuple[float, int]:
    result = await session.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(column == target_id)
    )
    average, count = result.one()
    return round(float(average or 0), 2), int(count or 0)


async def create_review(session: AsyncSession, values: Dict[str, Any]) -> Review:
    """Insert a review and refresh the tour and provider rating rollups"""
    try:
        review = Review(**values)
        session.add(review)
        await session.flush()

        if review.tour_id:
            tour = await session.get(Tour, review.tour_id)
            if tour:
                tour.rating, tour.reviews_count = await _rating_rollup(session, Review.tour_id, tour.id)

        if review.provider_id:
            provider = await session.get(ServiceProvider, review.provider_id)
            if provider:
                provider.rating, provider.reviews_count = await _rating_rollup(
                    session, Review.provider_id, provider.id
                )

        await session.commit()
        result = await session.execute(
            select(Review).where(Review.id == review.id).options(selectinload(Review.user))
            .execution_options(populate_existing=True)
        )
        logger.info(f"Created review {review.id} for booking {review.booking_id}")
        return result.scalar_one()
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating review: {e}")
        raise


# ===== PAYMENT INTENT CRUD OPERATIONS =====

async def get_payment_intent(session: AsyncSession, intent_id: str, user_id: Optional[UUID] = None) -> Optional[PaymentIntent]:
    stmt = select(PaymentIntent).where(PaymentIntent.id == intent_id)
    if user_id is not None:
        stmt = stmt.where(PaymentIntent.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_payment_intent_record(session: AsyncSession, values: Dict[str, Any]) -> PaymentIntent:
    try:
        intent = PaymentIntent(**values)
        session.add(intent)
        await session.commit()
        await session.refresh(intent)
        return intent
    except Exception as e:
        await session.rollback()
        logger.error(f"Error storing payment intent: {e}")
        raise


def to_decimal(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))
