import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import UUID as PyUUID

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, DateTime, Index, CheckConstraint, JSON, Enum as SAEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name: str, default: Enum) -> Column:
    return Column(
        SAEnum(
            enum_cls,
            name=name,
            native_enum=False,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=default,
    )


# Enums
class UserType(str, Enum):
    TOURIST = "tourist"
    PROVIDER = "provider"
    ADMIN = "admin"

class BudgetRange(str, Enum):
    BUDGET = "budget"
    MID_RANGE = "mid_range"
    LUXURY = "luxury"

class AccommodationType(str, Enum):
    HOTEL = "hotel"
    GUESTHOUSE = "guesthouse"
    RESORT = "resort"
    HOMESTAY = "homestay"

class BusinessType(str, Enum):
    HOTEL = "hotel"
    RESTAURANT = "restaurant"
    TOUR_OPERATOR = "tour_operator"
    TRANSPORT = "transport"
    ACTIVITY = "activity"

class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

class PaymentIntentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


# Booking states that hold capacity on a tour date
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class TimestampedModel(SQLModel):
    """Common audit columns for every table"""

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
    )


# Models
class User(TimestampedModel, table=True):
    __tablename__ = "users"

    __table_args__ = (
        Index('idx_users_user_type', 'user_type'),
        CheckConstraint('length(email) > 0', name='check_email_not_empty'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(
        index=True,
        unique=True,
        nullable=False,
        max_length=255,
        description="User's email address, used for login"
    )
    full_name: str = Field(nullable=False, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    country: Optional[str] = Field(default=None, max_length=100)
    user_type: UserType = Field(
        default=UserType.TOURIST,
        sa_column=_enum_column(UserType, "usertype", UserType.TOURIST),
        description="Role: tourist, provider or admin"
    )
    password_hash: str = Field(nullable=False, max_length=255)

    # Relationships
    preferences: Optional["UserPreferences"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False}
    )
    provider_profile: Optional["ServiceProvider"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False}
    )
    bookings: List["Booking"] = Relationship(back_populates="user")
    reviews: List["Review"] = Relationship(back_populates="user")


class UserPreferences(TimestampedModel, table=True):
    __tablename__ = "user_preferences"

    __table_args__ = (
        CheckConstraint('group_size >= 1 AND group_size <= 50', name='check_group_size'),
        CheckConstraint('travel_duration >= 1 AND travel_duration <= 30', name='check_travel_duration'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: PyUUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)
    budget_range: BudgetRange = Field(
        sa_column=_enum_column(BudgetRange, "budgetrange", BudgetRange.MID_RANGE)
    )
    preferred_activities: List[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
        description="Activity categories the traveller is interested in"
    )
    accommodation_type: AccommodationType = Field(
        sa_column=_enum_column(AccommodationType, "accommodationtype", AccommodationType.HOTEL)
    )
    group_size: int = Field(default=1)
    travel_duration: int = Field(default=1, description="Trip length in days")
    accessibility_needs: bool = Field(default=False)
    dietary_restrictions: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    user: Optional[User] = Relationship(back_populates="preferences")


class ServiceProvider(TimestampedModel, table=True):
    __tablename__ = "service_providers"

    __table_args__ = (
        Index('idx_service_providers_active', 'is_active'),
        Index('idx_service_providers_business_type', 'business_type'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: PyUUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)
    business_name: str = Field(nullable=False, max_length=255)
    business_type: BusinessType = Field(
        sa_column=_enum_column(BusinessType, "businesstype", BusinessType.TOUR_OPERATOR)
    )
    description: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=100)
    website: Optional[str] = None
    is_active: bool = Field(default=True)
    rating: float = Field(default=0.0)
    reviews_count: int = Field(default=0)

    user: Optional[User] = Relationship(back_populates="provider_profile")
    tours: List["Tour"] = Relationship(back_populates="provider")
    services: List["ProviderService"] = Relationship(back_populates="provider")
    amenities: List["ProviderAmenity"] = Relationship(back_populates="provider")


class ProviderService(TimestampedModel, table=True):
    __tablename__ = "provider_services"

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    provider_id: PyUUID = Field(foreign_key="service_providers.id", index=True, nullable=False)
    name: str = Field(max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    category: str = Field(max_length=100)
    is_active: bool = Field(default=True)

    provider: Optional[ServiceProvider] = Relationship(back_populates="services")


class ProviderAmenity(SQLModel, table=True):
    __tablename__ = "provider_amenities"

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    provider_id: PyUUID = Field(foreign_key="service_providers.id", index=True, nullable=False)
    name: str = Field(max_length=255)
    is_available: bool = Field(default=True)

    provider: Optional[ServiceProvider] = Relationship(back_populates="amenities")


class Tour(TimestampedModel, table=True):
    __tablename__ = "tours"

    __table_args__ = (
        Index('idx_tours_active_category', 'is_active', 'category'),
        Index('idx_tours_price', 'price'),
        Index('idx_tours_rating', 'rating'),
        CheckConstraint('price > 0', name='check_tour_price_positive'),
        CheckConstraint('duration > 0', name='check_tour_duration_positive'),
        CheckConstraint('max_participants > 0', name='check_tour_capacity_positive'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    provider_id: Optional[PyUUID] = Field(default=None, foreign_key="service_providers.id", index=True)
    title: str = Field(nullable=False, max_length=200)
    description: str = Field(nullable=False)
    price: Decimal = Field(max_digits=12, decimal_places=2, description="Price per participant")
    duration: int = Field(description="Duration in days")
    max_participants: int
    category: str = Field(max_length=100, index=True)
    location: str = Field(max_length=255)
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    itinerary: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    inclusions: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    exclusions: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    rating: float = Field(default=0.0)
    reviews_count: int = Field(default=0)
    is_active: bool = Field(default=True, description="Soft-delete marker")

    provider: Optional[ServiceProvider] = Relationship(back_populates="tours")
    bookings: List["Booking"] = Relationship(back_populates="tour")
    reviews: List["Review"] = Relationship(back_populates="tour")


class Booking(TimestampedModel, table=True):
    __tablename__ = "bookings"

    __table_args__ = (
        Index('idx_bookings_tour_date', 'tour_id', 'booking_date'),
        Index('idx_bookings_user_status', 'user_id', 'status'),
        CheckConstraint('participants > 0', name='check_booking_participants_positive'),
        CheckConstraint('total_amount >= 0', name='check_booking_total_non_negative'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: PyUUID = Field(foreign_key="users.id", nullable=False)
    tour_id: PyUUID = Field(foreign_key="tours.id", nullable=False)
    participants: int
    booking_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    total_amount: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Tour price times participants, frozen at creation"
    )
    status: BookingStatus = Field(
        default=BookingStatus.PENDING,
        sa_column=_enum_column(BookingStatus, "bookingstatus", BookingStatus.PENDING),
    )
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.PENDING,
        sa_column=_enum_column(PaymentStatus, "paymentstatus", PaymentStatus.PENDING),
    )
    payment_intent_id: Optional[str] = Field(default=None, index=True, max_length=255)
    confirmation_number: Optional[str] = Field(default=None, unique=True, max_length=32)
    special_requests: Optional[str] = None
    contact_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    notes: Optional[str] = None

    user: Optional[User] = Relationship(back_populates="bookings")
    tour: Optional[Tour] = Relationship(back_populates="bookings")
    review: Optional["Review"] = Relationship(
        back_populates="booking", sa_relationship_kwargs={"uselist": False}
    )


class Review(TimestampedModel, table=True):
    __tablename__ = "reviews"

    __table_args__ = (
        Index('idx_reviews_tour', 'tour_id'),
        Index('idx_reviews_provider', 'provider_id'),
        CheckConstraint('rating >= 1 AND rating <= 5', name='check_review_rating_range'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: PyUUID = Field(foreign_key="users.id", nullable=False)
    booking_id: PyUUID = Field(foreign_key="bookings.id", unique=True, nullable=False)
    tour_id: Optional[PyUUID] = Field(default=None, foreign_key="tours.id")
    provider_id: Optional[PyUUID] = Field(default=None, foreign_key="service_providers.id")
    rating: int
    title: str = Field(max_length=200)
    comment: str
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_verified: bool = Field(default=False)

    user: Optional[User] = Relationship(back_populates="reviews")
    booking: Optional[Booking] = Relationship(back_populates="review")
    tour: Optional[Tour] = Relationship(back_populates="reviews")


class PaymentIntent(TimestampedModel, table=True):
    """Local mirror of a gateway payment intent"""

    __tablename__ = "payment_intents"

    id: str = Field(primary_key=True, max_length=255, description="Gateway payment intent id")
    user_id: PyUUID = Field(foreign_key="users.id", index=True, nullable=False)
    tour_id: PyUUID = Field(foreign_key="tours.id", nullable=False)
    booking_id: Optional[PyUUID] = Field(default=None, foreign_key="bookings.id")
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="lkr", max_length=10)
    status: PaymentIntentStatus = Field(
        default=PaymentIntentStatus.PENDING,
        sa_column=_enum_column(PaymentIntentStatus, "paymentintentstatus", PaymentIntentStatus.PENDING),
    )
    participants: int
    booking_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    # "metadata" is reserved on declarative classes
    intent_metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )
