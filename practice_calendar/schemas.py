"""Request bodies for the appointment and availability endpoints.

Field names are snake_case; the camelCase spelling used by the web client
(``startDate``, ``clinicianId``...) is accepted as an alias.
"""
from datetime import datetime
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .utils import to_naive_utc


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator('start_date', 'end_date', check_fields=False)
    @classmethod
    def store_as_utc(cls, v):
        return to_naive_utc(v)

    # columns that cannot be cleared; a null sent for them is ignored
    NOT_NULL: ClassVar[tuple] = ('start_date', 'end_date', 'clinician_id', 'type', 'is_all_day', 'status',
                               'allow_online_requests')

    def changes(self) -> dict:
        """Fields the client actually sent, keyed by column name."""
        sent = self.model_dump(exclude_unset=True, by_alias=False)
        return {k: v for k, v in sent.items() if v is not None or k not in self.NOT_NULL}


class AppointmentCreate(_Body):
    type: str = 'APPOINTMENT'
    title: Optional[str] = None
    is_all_day: bool = False
    start_date: datetime
    end_date: datetime
    location_id: Optional[int] = None
    clinician_id: int
    client_group_id: Optional[int] = None
    service_id: Optional[int] = None
    appointment_fee: Optional[float] = None
    status: str = 'SCHEDULED'
    created_by: Optional[str] = None
    is_recurring: bool = False
    recurring_rule: Optional[str] = None

    @model_validator(mode='after')
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError('end_date must not be before start_date')
        if self.is_recurring and not self.recurring_rule:
            raise ValueError('recurring_rule is required when is_recurring is set')
        # events block time on the calendar and need no client or room
        if self.type.lower() != 'event':
            missing = [name for name in ('location_id', 'client_group_id') if getattr(self, name) is None]
            if missing:
                raise ValueError('missing required fields: ' + ', '.join(missing))
        return self

    @property
    def series_rule(self) -> Optional[str]:
        return self.recurring_rule if self.is_recurring else None

    def row_values(self) -> dict:
        return self.model_dump(exclude={'start_date', 'end_date', 'is_recurring', 'recurring_rule'})


class AppointmentUpdate(_Body):
    type: Optional[str] = None
    title: Optional[str] = None
    is_all_day: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location_id: Optional[int] = None
    clinician_id: Optional[int] = None
    client_group_id: Optional[int] = None
    service_id: Optional[int] = None
    appointment_fee: Optional[float] = None
    status: Optional[str] = None
    recurring_rule: Optional[str] = None


class AvailabilityCreate(_Body):
    clinician_id: int
    location_id: Optional[int] = None
    title: Optional[str] = None
    allow_online_requests: bool = False
    start_date: datetime
    end_date: datetime
    is_recurring: bool = False
    recurring_rule: Optional[str] = None
    # None: inherit the clinician's online-bookable services
    service_ids: Optional[List[int]] = None

    @model_validator(mode='after')
    def check_range(self):
        if self.end_date <= self.start_date:
            raise ValueError('end_date must be after start_date')
        if self.is_recurring and not self.recurring_rule:
            raise ValueError('recurring_rule is required when is_recurring is set')
        return self

    @property
    def series_rule(self) -> Optional[str]:
        return self.recurring_rule if self.is_recurring else None

    def row_values(self) -> dict:
        return self.model_dump(exclude={'start_date', 'end_date', 'is_recurring', 'recurring_rule', 'service_ids'})


class AvailabilityUpdate(_Body):
    location_id: Optional[int] = None
    title: Optional[str] = None
    allow_online_requests: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    recurring_rule: Optional[str] = None
