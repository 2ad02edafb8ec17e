from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from src.database import get_db
from src.auth.dependencies import get_current_user
from src.auth.schemas import ActingUser
from src.decisions.schemas import (
    ScanRequest, ScanResponse, DecisionRequest, DecisionResponse, OverstayStatus
)
from src.decisions.scan_service import ScanService
from src.decisions.decision_service import DecisionRecorder
from src.decisions.overstay_service import OverstayCalculator
from src.exceptions import BorderControlError

router = APIRouter()
overstay_router = APIRouter()


@router.post("/scan/{ticket_no}", response_model=ScanResponse)
def scan_ticket(
    ticket_no: str,
    request: ScanRequest,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    """Claim a ticket for an arrival or departure decision"""
    try:
        return ScanService(db).scan(ticket_no, request.action_type, current_user)
    except BorderControlError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.post("/decide", response_model=DecisionResponse)
def decide(
    request: DecisionRequest,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    """Record the agent's decision, propagated to the ticket's children"""
    try:
        return DecisionRecorder(db).decide(
            ticket_id=request.ticket_id,
            action_type=request.action_type,
            decision=request.decision,
            actor=current_user,
            comment=request.comment,
            patch=request.passenger_form
        )
    except BorderControlError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@overstay_router.get("/{ticket_id}/overstay", response_model=OverstayStatus)
def get_overstay_status(
    ticket_id: int,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(get_current_user)
):
    try:
        return OverstayCalculator(db).get_status(ticket_id)
    except BorderControlError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
