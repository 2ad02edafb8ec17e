from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime, date
from enum import Enum

from src.ports.schemas import PortSummary

class PassengerType(str, Enum):
    NATIONAL = "national"
    FOREIGNER = "foreigner"

class TicketStatus(str, Enum):
    """Ticket status enumeration"""
    DRAFT = "draft"
    PENDING = "pending"
    ACCEPTED_ARRIVAL = "accepted_arrival"
    REJECTED_ARRIVAL = "rejected_arrival"
    ACCEPTED_DEPARTURE = "accepted_departure"
    REJECTED_DEPARTURE = "rejected_departure"

ARRIVAL_TERMINAL_STATUSES = (TicketStatus.ACCEPTED_ARRIVAL.value, TicketStatus.REJECTED_ARRIVAL.value)
DEPARTURE_TERMINAL_STATUSES = (TicketStatus.ACCEPTED_DEPARTURE.value, TicketStatus.REJECTED_DEPARTURE.value)

class ActionType(str, Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"

class DecisionOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"

class Sex(str, Enum):
    MALE = "M"
    FEMALE = "F"

class TravelPurpose(str, Enum):
    BUSINESS = "business"
    RECREATION = "recreation"
    OTHER = "other"

# Structured blobs kept on the passenger form
class FamilyMember(BaseModel):
    """Accompanying traveler; overrides the parent's identity fields"""
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    date_of_birth: date
    sex: Sex
    birth_place: Optional[str] = Field(None, max_length=255)
    nationality: Optional[str] = Field(None, max_length=255)
    passport_number: Optional[str] = Field(None, max_length=255)
    initials: Optional[str] = Field(None, max_length=20)
    relationship: Optional[str] = Field(None, max_length=100)
    passenger_type: Optional[PassengerType] = None

class DeclaredItem(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    value: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, max_length=3)

# Ticket creation
class PassengerFormBase(BaseModel):
    last_name: str = Field(..., min_length=1, max_length=255)
    first_name: str = Field(..., min_length=1, max_length=255)
    initials: Optional[str] = Field(None, max_length=20)
    date_of_birth: date
    sex: Sex
    birth_place: str = Field(..., min_length=1, max_length=255)
    nationality: Optional[str] = Field(None, max_length=255)
    passport_number: str = Field(..., min_length=1, max_length=255)
    carrier_number: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    travel_purpose: Optional[TravelPurpose] = None
    travel_date: Optional[date] = None
    visa_number: Optional[str] = Field(None, max_length=255)
    visa_issued_at: Optional[date] = None
    residence_street: str = Field(..., min_length=1, max_length=255)
    residence_city: str = Field(..., min_length=1, max_length=255)
    residence_state: Optional[str] = Field(None, max_length=255)
    residence_postal_code: Optional[str] = Field(None, max_length=50)
    residence_country: str = Field(..., min_length=1, max_length=255)
    local_street: str = Field(..., min_length=1, max_length=255)
    local_city: str = Field(..., min_length=1, max_length=255)
    local_phone: str = Field(..., min_length=1, max_length=255)

class TicketCreate(PassengerFormBase):
    """Traveler registration, optionally with accompanying family members"""
    passenger_type: PassengerType
    port_of_entry: str = Field(..., min_length=1, max_length=10, description="Port code")
    email: Optional[EmailStr] = None
    ticket_no: Optional[str] = Field(None, description="Pre-assigned mixed-service number (G prefix)")
    family_members: List[FamilyMember] = []

    @field_validator("ticket_no")
    @classmethod
    def normalize_ticket_no(cls, v):
        return v.strip().upper() if v else v

class TicketCreateResponse(BaseModel):
    message: str = "Ticket created successfully."
    ticket_no: str
    passport_number: str
    children_tickets: List[str] = []

# Partial update of a passenger form (agent edit, or alongside a decision)
class PassengerFormPatch(BaseModel):
    last_name: Optional[str] = Field(None, min_length=1, max_length=255)
    first_name: Optional[str] = Field(None, min_length=1, max_length=255)
    initials: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[date] = None
    sex: Optional[Sex] = None
    birth_place: Optional[str] = Field(None, max_length=255)
    nationality: Optional[str] = Field(None, max_length=255)
    passport_number: Optional[str] = Field(None, min_length=1, max_length=255)
    carrier_number: Optional[str] = Field(None, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    port_of_entry_id: Optional[int] = None
    travel_purpose: Optional[TravelPurpose] = None
    travel_date: Optional[date] = None
    visa_number: Optional[str] = Field(None, max_length=255)
    visa_issued_at: Optional[date] = None
    residence_street: Optional[str] = Field(None, max_length=255)
    residence_city: Optional[str] = Field(None, max_length=255)
    residence_state: Optional[str] = Field(None, max_length=255)
    residence_postal_code: Optional[str] = Field(None, max_length=50)
    residence_country: Optional[str] = Field(None, max_length=255)
    local_street: Optional[str] = Field(None, max_length=255)
    local_city: Optional[str] = Field(None, max_length=255)
    local_phone: Optional[str] = Field(None, max_length=255)
    family_members: Optional[List[FamilyMember]] = None
    declared_items: Optional[List[DeclaredItem]] = None

    class Config:
        extra = "forbid"

# Read models
class PassengerFormRead(BaseModel):
    id: int
    ticket_id: int
    last_name: str
    first_name: str
    initials: Optional[str] = None
    date_of_birth: date
    sex: str
    birth_place: Optional[str] = None
    nationality: Optional[str] = None
    passport_number: Optional[str] = None
    carrier_number: Optional[str] = None
    company: Optional[str] = None
    port_of_entry_id: int
    port_of_entry: Optional[PortSummary] = None
    travel_purpose: Optional[str] = None
    travel_date: Optional[date] = None
    visa_number: Optional[str] = None
    visa_issued_at: Optional[date] = None
    residence_street: Optional[str] = None
    residence_city: Optional[str] = None
    residence_state: Optional[str] = None
    residence_postal_code: Optional[str] = None
    residence_country: Optional[str] = None
    local_street: Optional[str] = None
    local_city: Optional[str] = None
    local_phone: Optional[str] = None
    number_of_family_members: int = 0
    family_members: Optional[List[dict]] = None
    declared_items: Optional[List[dict]] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class DecisionRead(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    action_type: ActionType
    decision: DecisionOutcome
    port_of_action_id: int
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class TicketRead(BaseModel):
    id: int
    ticket_no: str
    status: TicketStatus
    status_changed_at: datetime
    passenger_type: PassengerType
    email: Optional[str] = None
    parent_no: Optional[str] = None
    children_no: List[str] = []
    family_role: str
    service_type: str
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class TicketDetail(TicketRead):
    passenger_form: Optional[PassengerFormRead] = None
    decisions: List[DecisionRead] = []

class TicketLookupResponse(BaseModel):
    message: str = "Ticket retrieved successfully."
    ticket: TicketDetail
    passport_number: str
