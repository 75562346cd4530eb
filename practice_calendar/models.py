from typing import Optional
from datetime import datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field


class Clinician(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str
    last_name: str
    is_active: bool = Field(default=True)


class Location(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    address: Optional[str] = None


class ClientGroup(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = Field(default='individual')


class PracticeService(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str
    description: Optional[str] = None
    rate: Optional[float] = None
    duration: Optional[int] = None
    # Only online-bookable services are copied onto new availability blocks
    allow_online_booking: bool = Field(default=False)


class ClinicianService(SQLModel, table=True):
    clinician_id: Optional[int] = Field(default=None, foreign_key="clinician.id", primary_key=True)
    service_id: Optional[int] = Field(default=None, foreign_key="practiceservice.id", primary_key=True)
    is_active: bool = Field(default=True)
    custom_rate: Optional[float] = None


class Tag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    color: Optional[str] = None


class AppointmentLimit(SQLModel, table=True):
    """Maximum number of non-cancelled appointments per clinician per day."""
    id: Optional[int] = Field(default=None, primary_key=True)
    clinician_id: int = Field(foreign_key="clinician.id", index=True)
    date: datetime
    max_limit: int


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(default='APPOINTMENT')
    title: Optional[str] = None
    is_all_day: bool = Field(default=False)
    # naive UTC
    start_date: datetime = Field(index=True)
    end_date: datetime
    location_id: Optional[int] = Field(default=None, foreign_key="location.id")
    clinician_id: int = Field(foreign_key="clinician.id", index=True)
    client_group_id: Optional[int] = Field(default=None, foreign_key="clientgroup.id", index=True)
    service_id: Optional[int] = Field(default=None, foreign_key="practiceservice.id")
    appointment_fee: Optional[float] = None
    status: str = Field(default='SCHEDULED')
    created_by: Optional[str] = None
    created_at: datetime | None = Field(default_factory=now_utc)
    # Series topology: the master holds the rule and no parent; every
    # other instance points at the master by id.
    is_recurring: bool = Field(default=False)
    recurring_rule: Optional[str] = None
    recurring_parent_id: Optional[int] = Field(default=None, foreign_key="appointment.id", index=True)


class AppointmentTag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointment.id", index=True)
    tag_id: int = Field(foreign_key="tag.id", index=True)


class Availability(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    clinician_id: int = Field(foreign_key="clinician.id", index=True)
    location_id: Optional[int] = Field(default=None, foreign_key="location.id")
    title: Optional[str] = None
    allow_online_requests: bool = Field(default=False)
    start_date: datetime = Field(index=True)
    end_date: datetime
    created_at: datetime | None = Field(default_factory=now_utc)
    is_recurring: bool = Field(default=False)
    recurring_rule: Optional[str] = None
    recurring_parent_id: Optional[int] = Field(default=None, foreign_key="availability.id", index=True)


class AvailabilityService(SQLModel, table=True):
    availability_id: Optional[int] = Field(default=None, foreign_key="availability.id", primary_key=True)
    service_id: Optional[int] = Field(default=None, foreign_key="practiceservice.id", primary_key=True)
