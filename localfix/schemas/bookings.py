from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from localfix.schemas.profiles import ContactProfile

ServiceStatusValue = Literal["pending", "approved", "open", "closed"]


class ServiceCreateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    price: float | None = None
    duration: str | None = None
    location: str | None = None


class ServiceStatusRequest(BaseModel):
    status: ServiceStatusValue


class ServiceOut(BaseModel):
    id: str
    provider_id: str
    name: str
    description: str | None = None
    price: float | None = None
    duration: str | None = None
    location: str | None = None
    status: str
    created_at: str | None = None
    updated_at: str | None = None


class ServiceSummary(BaseModel):
    id: str
    provider_id: str | None = None
    name: str | None = None
    price: float | None = None
    duration: str | None = None
    location: str | None = None
    status: str | None = None


class BookingCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_id: str = Field(alias="serviceId", min_length=1)
    booking_date: str = Field(alias="bookingDate", min_length=1)
    notes: str | None = None


class BookingActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="bookingId", min_length=1)


class BookingOut(BaseModel):
    id: str
    service_id: str
    client_id: str | None = None
    booking_date: str | None = None
    status: str
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class BookingView(BaseModel):
    """Booking as a given viewer may see it; hidden bookings omit client fields."""

    id: str
    service_id: str
    client_id: str | None = None
    booking_date: str | None = None
    status: str
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    client: ContactProfile | None = None
    client_hidden: bool
    service: ServiceSummary | None = None
