from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from src.config import settings
from src.models import Ticket, Decision, utcnow
from src.tickets.schemas import ActionType, DecisionOutcome, PassengerType
from src.decisions.schemas import OverstayStatus
from src.exceptions import TicketNotFound, NotAForeigner


class OverstayCalculator:
    """Legal-stay compliance for foreign travelers, derived from decision history"""

    def __init__(self, db: Session, legal_limit_days: Optional[int] = None):
        self.db = db
        self.legal_limit_days = legal_limit_days if legal_limit_days is not None else settings.LEGAL_STAY_LIMIT_DAYS

    def get_status(self, ticket_id: int, now: Optional[datetime] = None) -> OverstayStatus:
        now = now or utcnow()

        ticket = self.db.query(Ticket).filter(
            Ticket.id == ticket_id,
            Ticket.deleted_at.is_(None)
        ).first()
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")
        if ticket.passenger_type != PassengerType.FOREIGNER.value:
            raise NotAForeigner()

        arrival = self._latest_accepted(ticket.id, ActionType.ARRIVAL)
        if arrival is None:
            return OverstayStatus(
                ticket_no=ticket.ticket_no,
                in_country=False,
                legal_limit_days=self.legal_limit_days
            )

        expiry = arrival.created_at + timedelta(days=self.legal_limit_days)
        departure = self._latest_accepted(ticket.id, ActionType.DEPARTURE)
        if departure is not None and departure.created_at > arrival.created_at:
            # Traveler left; report the completed stay
            stay_days = (departure.created_at - arrival.created_at).days
            return OverstayStatus(
                ticket_no=ticket.ticket_no,
                in_country=False,
                arrival_date=arrival.created_at,
                departure_date=departure.created_at,
                days_in_country=stay_days,
                legal_limit_days=self.legal_limit_days,
                expiry_date=expiry
            )

        days_in_country = max((now - arrival.created_at).days, 0)
        return OverstayStatus(
            ticket_no=ticket.ticket_no,
            in_country=True,
            arrival_date=arrival.created_at,
            days_in_country=days_in_country,
            legal_limit_days=self.legal_limit_days,
            expiry_date=expiry,
            remaining_days=max(self.legal_limit_days - days_in_country, 0),
            is_overstay=days_in_country > self.legal_limit_days,
            days_overstay=max(days_in_country - self.legal_limit_days, 0)
        )

    def _latest_accepted(self, ticket_id: int, action_type: ActionType) -> Optional[Decision]:
        return self.db.query(Decision).filter(
            Decision.ticket_id == ticket_id,
            Decision.action_type == action_type.value,
            Decision.decision == DecisionOutcome.ACCEPTED.value
        ).order_by(Decision.created_at.desc()).first()
