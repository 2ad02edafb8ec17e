from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from src.ports.schemas import PortSummary
from src.tickets.schemas import (
    ActionType, DecisionOutcome, TicketStatus, TicketDetail, PassengerFormPatch
)

# Scan
class ScanRequest(BaseModel):
    action_type: ActionType

class ScanResponse(BaseModel):
    message: str = "Ticket claimed for processing."
    ticket: TicketDetail
    port_of_action: PortSummary
    ports: List[PortSummary]
    lease_expires_at: datetime

# Decision
class DecisionRequest(BaseModel):
    ticket_id: int
    action_type: ActionType
    decision: DecisionOutcome
    comment: Optional[str] = Field(None, max_length=2000)
    passenger_form: Optional[PassengerFormPatch] = None

class DecisionResponse(BaseModel):
    message: str = "Decision recorded successfully."
    ticket_no: str
    status: TicketStatus
    decision: DecisionOutcome
    action_type: ActionType
    warning: Optional[str] = None
    children_updated: List[str] = []

# Overstay
class OverstayStatus(BaseModel):
    ticket_no: str
    in_country: bool
    arrival_date: Optional[datetime] = None
    departure_date: Optional[datetime] = None
    days_in_country: int = 0
    legal_limit_days: int
    expiry_date: Optional[datetime] = None
    remaining_days: Optional[int] = None
    is_overstay: bool = False
    days_overstay: int = 0
