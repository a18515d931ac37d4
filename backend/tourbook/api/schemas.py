from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from tourbook.core import validation
from tourbook.db.models import (
    AccommodationType, BookingStatus, BudgetRange, BusinessType,
    PaymentIntentStatus, PaymentStatus, UserType,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ===== AUTH SCHEMAS =====

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=2, max_length=255)
    phone: Optional[str] = None
    country: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, v):
        return validation.safe_text(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


class AdminSetup(BaseModel):
    email: EmailStr
    password: str
    full_name: str = Field(..., min_length=2)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(c.islower() for c in v) or not any(c.isupper() for c in v) or not any(c.isdigit() for c in v):
            raise ValueError(
                "Password must contain at least one lowercase letter, one uppercase letter, and one number"
            )
        return v


# ===== USER SCHEMAS =====

class UserRead(ORMModel):
    id: UUID
    email: str
    full_name: str
    phone: Optional[str] = None
    country: Optional[str] = None
    user_type: UserType
    created_at: datetime


class UserSummary(ORMModel):
    full_name: str
    email: str


class ProfileStats(BaseModel):
    total_bookings: int = 0
    confirmed_bookings: int = 0
    completed_bookings: int = 0
    total_spent: float = 0.0


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = Field(None, min_length=1)
    country: Optional[str] = None

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, v):
        return validation.safe_text(v) if v is not None else v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return validation.phone_number(v) if v is not None else v


# ===== PREFERENCE SCHEMAS =====

class PreferencesIn(BaseModel):
    budget_range: BudgetRange
    preferred_activities: List[str] = Field(..., min_length=1)
    accommodation_type: AccommodationType
    group_size: int = Field(..., ge=1, le=50)
    travel_duration: int = Field(..., ge=1, le=30)
    accessibility_needs: bool = False
    dietary_restrictions: List[str] = Field(default_factory=list)

    @field_validator('preferred_activities')
    @classmethod
    def validate_activities(cls, v):
        cleaned = [a.strip() for a in v if a and a.strip()]
        if not cleaned:
            raise ValueError("Please select at least one activity")
        return cleaned


class PreferencesUpdate(BaseModel):
    budget_range: Optional[BudgetRange] = None
    preferred_activities: Optional[List[str]] = Field(None, min_length=1)
    accommodation_type: Optional[AccommodationType] = None
    group_size: Optional[int] = Field(None, ge=1, le=50)
    travel_duration: Optional[int] = Field(None, ge=1, le=30)
    accessibility_needs: Optional[bool] = None
    dietary_restrictions: Optional[List[str]] = None


class PreferencesRead(ORMModel):
    id: UUID
    user_id: UUID
    budget_range: BudgetRange
    preferred_activities: List[str]
    accommodation_type: AccommodationType
    group_size: int
    travel_duration: int
    accessibility_needs: bool
    dietary_restrictions: List[str]
    created_at: datetime
    updated_at: datetime


# ===== PROVIDER SCHEMAS =====

class BusinessInfo(BaseModel):
    businessName: str = Field(..., min_length=2)
    businessType: BusinessType
    description: str = Field(..., min_length=10)


class ContactInfo(BaseModel):
    phone: str = Field(..., min_length=10)
    email: EmailStr
    address: str = Field(..., min_length=5)
    city: str = Field(..., min_length=2)
    website: Optional[str] = None

    @field_validator('website')
    @classmethod
    def validate_website(cls, v):
        if v in (None, ""):
            return None
        if not validation.is_valid_url(v):
            raise ValueError("Please enter a valid website URL")
        return v


class ServiceIn(BaseModel):
    name: str = Field(..., min_length=2)
    description: str = Field(..., min_length=5)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=2)


class ProviderRegistration(BaseModel):
    userId: UUID
    businessInfo: BusinessInfo
    contactInfo: ContactInfo
    services: Optional[List[ServiceIn]] = None
    amenities: Optional[List[str]] = None


class ProviderStatusUpdate(BaseModel):
    is_active: bool


class ProviderSummary(ORMModel):
    id: UUID
    business_name: str
    city: Optional[str] = None
    rating: float = 0.0


class ProviderRead(ORMModel):
    id: UUID
    user_id: UUID
    business_name: str
    business_type: BusinessType
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    website: Optional[str] = None
    is_active: bool
    rating: float
    reviews_count: int
    created_at: datetime


class ProviderWithOwner(ProviderRead):
    user: Optional[UserSummary] = None


class ProfileRead(UserRead):
    preferences: Optional[PreferencesRead] = None
    provider_profile: Optional[ProviderRead] = None
    stats: ProfileStats


# ===== TOUR SCHEMAS =====

class TourCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, le=validation.MAX_PRICE)
    duration: int = Field(..., gt=0)
    max_participants: int = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    itinerary: Any = Field(default_factory=list)
    inclusions: List[str] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    provider_id: Optional[UUID] = None

    @model_validator(mode='before')
    @classmethod
    def accept_included_services(cls, data):
        if isinstance(data, dict) and "included_services" in data and "inclusions" not in data:
            data = dict(data)
            data["inclusions"] = data.pop("included_services")
        return data

    @field_validator('title', 'description')
    @classmethod
    def validate_text(cls, v):
        return validation.safe_text(v)

    @field_validator('location')
    @classmethod
    def validate_location(cls, v):
        return validation.location_name(v)

    @field_validator('images')
    @classmethod
    def validate_images(cls, v):
        return validation.url_list(v)


class TourUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0, le=validation.MAX_PRICE)
    duration: Optional[int] = Field(None, gt=0)
    max_participants: Optional[int] = Field(None, gt=0)
    category: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    itinerary: Optional[Any] = None
    inclusions: Optional[List[str]] = None
    exclusions: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @model_validator(mode='before')
    @classmethod
    def accept_included_services(cls, data):
        if isinstance(data, dict) and "included_services" in data and "inclusions" not in data:
            data = dict(data)
            data["inclusions"] = data.pop("included_services")
        return data

    @field_validator('title', 'description')
    @classmethod
    def validate_text(cls, v):
        return validation.safe_text(v) if v is not None else v

    @field_validator('location')
    @classmethod
    def validate_location(cls, v):
        return validation.location_name(v) if v is not None else v

    @field_validator('images')
    @classmethod
    def validate_images(cls, v):
        return validation.url_list(v) if v is not None else v


class TourRead(ORMModel):
    id: UUID
    provider_id: Optional[UUID] = None
    title: str
    description: str
    price: float
    duration: int
    max_participants: int
    category: str
    location: str
    images: List[str] = []
    itinerary: Optional[Any] = None
    inclusions: List[str] = []
    exclusions: List[str] = []
    rating: float = 0.0
    reviews_count: int = 0
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TourWithProvider(TourRead):
    provider: Optional[ProviderSummary] = None


class TourSummary(ORMModel):
    id: UUID
    title: str
    location: str
    duration: int
    price: float
    images: List[str] = []
    provider: Optional[ProviderSummary] = None


# ===== REVIEW SCHEMAS =====

class ReviewCreate(BaseModel):
    booking_id: UUID
    tour_id: Optional[UUID] = None
    provider_id: Optional[UUID] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=200)
    comment: str = Field(..., min_length=10, max_length=2000)
    images: List[str] = Field(default_factory=list)

    @field_validator('title', 'comment')
    @classmethod
    def validate_text(cls, v):
        return validation.safe_text(v)

    @field_validator('images')
    @classmethod
    def validate_images(cls, v):
        return validation.url_list(v, max_items=5)


class ReviewRead(ORMModel):
    id: UUID
    user_id: UUID
    booking_id: UUID
    tour_id: Optional[UUID] = None
    provider_id: Optional[UUID] = None
    rating: int
    title: str
    comment: str
    images: List[str] = []
    is_verified: bool
    created_at: datetime


class ReviewerSummary(ORMModel):
    full_name: str


class ReviewWithReviewer(ReviewRead):
    user: Optional[ReviewerSummary] = None


class TourDetail(TourWithProvider):
    reviews: List[ReviewWithReviewer] = []


# ===== BOOKING SCHEMAS =====

class EmergencyContact(BaseModel):
    name: str = Field(..., min_length=2)
    phone: str = Field(..., min_length=10)
    relationship: str = Field(..., min_length=2)


class ParticipantDetail(BaseModel):
    name: str = Field(..., min_length=2)
    age: int = Field(..., ge=1, le=120)
    dietary_restrictions: Optional[str] = None
    medical_conditions: Optional[str] = None


class BookingCreate(BaseModel):
    tour_id: UUID
    booking_date: datetime
    participants: int = Field(..., ge=1, le=50)
    special_requests: Optional[str] = None
    contact_phone: str = Field(..., min_length=10)
    emergency_contact: Optional[EmergencyContact] = None
    participant_details: Optional[List[ParticipantDetail]] = None

    @field_validator('booking_date')
    @classmethod
    def validate_booking_date(cls, v):
        return validation.future_date(v)

    @field_validator('special_requests')
    @classmethod
    def validate_special_requests(cls, v):
        return validation.safe_text(v) if v else v

    def contact_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"phone": self.contact_phone}
        if self.emergency_contact:
            info["emergency_contact"] = self.emergency_contact.model_dump()
        if self.participant_details:
            info["participant_details"] = [p.model_dump() for p in self.participant_details]
        return info


class BookingContactUpdate(BaseModel):
    phone: Optional[str] = Field(None, min_length=1)
    emergency_contact: Optional[str] = None
    dietary_restrictions: Optional[List[str]] = None
    accessibility_needs: Optional[str] = None


class BookingUpdate(BaseModel):
    participants: Optional[int] = Field(None, ge=1, le=50)
    booking_date: Optional[datetime] = None
    special_requests: Optional[str] = None
    contact_info: Optional[BookingContactUpdate] = None

    @field_validator('booking_date')
    @classmethod
    def validate_booking_date(cls, v):
        return validation.future_date(v)


class BookingRead(ORMModel):
    id: UUID
    user_id: UUID
    tour_id: UUID
    participants: int
    booking_date: datetime
    total_amount: float
    status: BookingStatus
    payment_status: PaymentStatus
    payment_intent_id: Optional[str] = None
    confirmation_number: Optional[str] = None
    special_requests: Optional[str] = None
    contact_info: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator('booking_date')
    @classmethod
    def as_utc(cls, v):
        return validation.ensure_utc(v)


class BookingWithTour(BookingRead):
    tour: Optional[TourSummary] = None


class BookingDetail(BookingWithTour):
    review: Optional[ReviewRead] = None


# ===== RECOMMENDATION SCHEMAS =====

class RecommendedTour(BaseModel):
    tour: TourWithProvider
    match_score: float
    reasons: List[str]


class RecommendationsResponse(BaseModel):
    recommendations: List[RecommendedTour]
    preferences: PreferencesRead
    total: int


# ===== PAYMENT SCHEMAS =====

class PaymentIntentCreate(BaseModel):
    tour_id: UUID
    participants: int = Field(..., ge=1)
    booking_date: datetime
    amount: float = Field(..., ge=100, description="Amount in LKR")


class PaymentIntentCreated(BaseModel):
    client_secret: Optional[str]
    payment_intent_id: str
    amount: float
    currency: str


class PaymentIntentRead(ORMModel):
    id: str
    user_id: UUID
    tour_id: UUID
    booking_id: Optional[UUID] = None
    amount: float
    currency: str
    status: PaymentIntentStatus
    participants: int
    booking_date: datetime
    created_at: datetime
    gateway_status: Optional[str] = None

    @field_validator('booking_date')
    @classmethod
    def as_utc(cls, v):
        return validation.ensure_utc(v)


class BookingDataIn(BaseModel):
    tour_id: UUID
    participants: int = Field(..., ge=1)
    booking_date: datetime
    special_requests: Optional[str] = None


class PaymentConfirm(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    booking_data: BookingDataIn


class PaymentConfirmed(BaseModel):
    booking: BookingWithTour
    confirmation_number: str


# ===== SEED / SETUP SCHEMAS =====

class SeededTour(BaseModel):
    id: UUID
    title: str


class SeedResult(BaseModel):
    count: int
    tours: List[SeededTour] = []


class AdminStatus(BaseModel):
    admin_exists: bool
