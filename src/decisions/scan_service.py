import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload, selectinload

from src.config import settings
from src.models import Ticket, PassengerForm, Decision, utcnow
from src.auth.schemas import ActingUser
from src.ports.schemas import PortSummary
from src.ports.service import PortService
from src.tickets.schemas import (
    ActionType, TicketStatus, TicketDetail, DEPARTURE_TERMINAL_STATUSES
)
from src.decisions.schemas import ScanResponse
from src.exceptions import (
    TicketNotFound, AlreadyFinalized, AlreadyDecided, LockHeld, MissingPassengerForm, UnknownPort
)

logger = logging.getLogger(__name__)


def decision_exists(db: Session, ticket_id: int, action_type: str) -> bool:
    return db.query(
        db.query(Decision.id).filter(
            Decision.ticket_id == ticket_id,
            Decision.action_type == action_type
        ).exists()
    ).scalar()


class ScanService:
    """Short-lived claim on a ticket while an agent works it.

    A scan moves the ticket to ``pending``. The claim is a lease: it lapses
    ``SCAN_LOCK_MINUTES`` after the status change, and a later scan may
    take it over. Claiming is a single conditional UPDATE so two agents can
    never both win the same lease.
    """

    def __init__(self, db: Session, lease_minutes: Optional[int] = None):
        self.db = db
        self.lease = timedelta(minutes=lease_minutes if lease_minutes is not None else settings.SCAN_LOCK_MINUTES)

    def scan(
        self,
        ticket_no: str,
        action_type: ActionType,
        actor: ActingUser,
        now: Optional[datetime] = None
    ) -> ScanResponse:
        now = now or utcnow()
        action = ActionType(action_type).value
        ticket_no = ticket_no.strip().upper()

        ticket = self.db.query(Ticket).options(
            joinedload(Ticket.passenger_form).joinedload(PassengerForm.port_of_entry),
            selectinload(Ticket.decisions),
        ).filter(
            Ticket.ticket_no == ticket_no,
            Ticket.deleted_at.is_(None)
        ).first()
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_no} not found")

        if action == ActionType.ARRIVAL.value and (
            ticket.status in DEPARTURE_TERMINAL_STATUSES
            or decision_exists(self.db, ticket.id, ActionType.DEPARTURE.value)
        ):
            raise AlreadyFinalized(f"Ticket {ticket_no} has already been recorded for a departure")

        if decision_exists(self.db, ticket.id, action):
            raise AlreadyDecided(f"Ticket {ticket_no} already has a decision for {action}")

        if ticket.passenger_form is None:
            raise MissingPassengerForm(f"Passenger form not found for ticket {ticket_no}")
        port_of_entry = PortService.get_port_by_id(self.db, ticket.passenger_form.port_of_entry_id)
        if port_of_entry is None:
            raise UnknownPort(f"Port of entry for ticket {ticket_no} cannot be resolved")

        claimed = self._claim(ticket.id, action, now)
        if not claimed:
            self.db.rollback()
            if decision_exists(self.db, ticket.id, action):
                raise AlreadyDecided(f"Ticket {ticket_no} already has a decision for {action}")
            remaining = self._remaining_seconds(ticket.id, now)
            logger.warning(
                "Scan of %s for %s by user %s refused, lease held for %ds",
                ticket_no, action, actor.user_id, remaining
            )
            raise LockHeld(remaining_seconds=remaining)

        self.db.commit()
        logger.info("Ticket %s claimed for %s by user %s", ticket_no, action, actor.user_id)

        ticket = self.db.query(Ticket).options(
            joinedload(Ticket.passenger_form).joinedload(PassengerForm.port_of_entry),
            selectinload(Ticket.decisions),
            selectinload(Ticket.children),
        ).filter(Ticket.id == ticket.id).one()
        ports = PortService.get_active_ports(self.db)

        return ScanResponse(
            ticket=TicketDetail.model_validate(ticket),
            port_of_action=PortSummary.model_validate(port_of_entry),
            ports=[PortSummary.model_validate(p) for p in ports],
            lease_expires_at=now + self.lease
        )

    def _claim(self, ticket_id: int, action: str, now: datetime) -> bool:
        """Compare-and-swap the ticket into ``pending``; False when the lease is held"""
        stale_before = now - self.lease
        no_decision = ~self.db.query(Decision.id).filter(
            Decision.ticket_id == ticket_id,
            Decision.action_type == action
        ).exists()

        updated = self.db.query(Ticket).filter(
            Ticket.id == ticket_id,
            Ticket.deleted_at.is_(None),
            or_(
                Ticket.status != TicketStatus.PENDING.value,
                Ticket.status_changed_at <= stale_before
            ),
            no_decision
        ).update(
            {
                Ticket.status: TicketStatus.PENDING.value,
                Ticket.status_changed_at: now,
                Ticket.updated_at: now,
            },
            synchronize_session=False
        )
        return updated == 1

    def _remaining_seconds(self, ticket_id: int, now: datetime) -> int:
        changed_at = self.db.query(Ticket.status_changed_at).filter(Ticket.id == ticket_id).scalar()
        if changed_at is None:
            return 1
        remaining = (changed_at + self.lease - now).total_seconds()
        return max(1, math.ceil(remaining))
