from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from src.database import get_db
from src.auth.dependencies import get_current_user, require_admin
from src.auth.schemas import ActingUser
from src.tickets.schemas import (
    TicketCreate, TicketCreateResponse, TicketLookupResponse, TicketDetail,
    TicketRead, DecisionRead, PassengerFormPatch
)
from src.tickets.service import TicketService
from src.exceptions import BorderControlError

router = APIRouter()
agent_router = APIRouter()
admin_router = APIRouter()


def _http_error(e: BorderControlError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


# Traveler endpoints
@router.post("", response_model=TicketCreateResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(request: TicketCreate, db: Session = Depends(get_db)):
    """Register a traveler ticket, plus one child ticket per family member"""
    try:
        return TicketService(db).create_ticket(request)
    except BorderControlError as e:
        raise _http_error(e)

@router.get("/lookup", response_model=TicketLookupResponse)
def lookup_ticket(
    ticket_no: Optional[str] = Query(None, description="Ticket number"),
    passport_number: Optional[str] = Query(None, description="Passport number on the ticket"),
    db: Session = Depends(get_db)
):
    """Retrieve a ticket with its number and passport number"""
    try:
        ticket = TicketService(db).find_by_number_and_passport(ticket_no, passport_number)
    except BorderControlError as e:
        raise _http_error(e)

    return TicketLookupResponse(
        ticket=TicketDetail.model_validate(ticket),
        passport_number=ticket.passenger_form.passport_number
    )

@router.get("/{ticket_id}", response_model=TicketDetail)
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    """Ticket with its passenger form and decision history, for agents"""
    try:
        ticket = TicketService(db).get_ticket(ticket_id)
    except BorderControlError as e:
        raise _http_error(e)
    return TicketDetail.model_validate(ticket)

@router.get("/{ticket_id}/decisions", response_model=List[DecisionRead])
def get_ticket_decisions(
    ticket_id: int,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    try:
        decisions = TicketService(db).get_decisions(ticket_id)
    except BorderControlError as e:
        raise _http_error(e)
    return [DecisionRead.model_validate(d) for d in decisions]


# Agent endpoints
@agent_router.put("/tickets/{ticket_id}/passenger-form", response_model=TicketDetail)
def update_passenger_form(
    ticket_id: int,
    patch: PassengerFormPatch,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    """Correct the passenger form before a decision is recorded"""
    try:
        ticket = TicketService(db).update_passenger_form(ticket_id, patch)
    except BorderControlError as e:
        raise _http_error(e)
    return TicketDetail.model_validate(ticket)


# Admin endpoints
@admin_router.get("/tickets")
def list_tickets(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status_filter: Optional[str] = Query(None, alias="status"),
    passenger_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin_user: ActingUser = Depends(require_admin)
):
    """Paginated ticket listing for administrators"""
    tickets, total = TicketService(db).list_tickets(
        skip=skip, limit=limit, status=status_filter, passenger_type=passenger_type
    )
    return {
        "data": [TicketRead.model_validate(t) for t in tickets],
        "total": total,
        "skip": skip,
        "limit": limit
    }

@admin_router.delete("/tickets/{ticket_id}", response_model=TicketRead)
def soft_delete_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    admin_user: ActingUser = Depends(require_admin)
):
    """Hide a ticket from every lookup; its number stays reserved"""
    try:
        ticket = TicketService(db).soft_delete_ticket(ticket_id)
    except BorderControlError as e:
        raise _http_error(e)
    return TicketRead.model_validate(ticket)

@admin_router.delete("/tickets/{ticket_id}/purge")
def purge_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    admin_user: ActingUser = Depends(require_admin)
):
    """Permanently delete a ticket with its passenger form and decisions"""
    try:
        ticket_no = TicketService(db).purge_ticket(ticket_id)
    except BorderControlError as e:
        raise _http_error(e)
    return {"message": f"Ticket {ticket_no} purged", "ticket_no": ticket_no}
