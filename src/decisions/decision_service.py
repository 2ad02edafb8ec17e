import logging
import threading
import weakref
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models import Ticket, Decision, utcnow
from src.auth.schemas import ActingUser
from src.tickets.schemas import (
    ActionType, DecisionOutcome, PassengerFormPatch, DEPARTURE_TERMINAL_STATUSES
)
from src.tickets.service import apply_passenger_form_patch
from src.decisions.schemas import DecisionResponse
from src.decisions.scan_service import decision_exists
from src.exceptions import (
    BorderControlError, TicketNotFound, NoPortAssigned, MissingPassengerForm, WrongPort,
    DuplicateDecision, AlreadyFinalized, DecisionPersistenceFailed
)

logger = logging.getLogger(__name__)

NO_ARRIVAL_WARNING = "This ticket has not been scanned for an arrival yet."


class DecisionRecorder:
    """Records accept/reject decisions and drives the ticket status machine.

    One decision per (ticket, action type). The parent's decision is copied to
    every live child that has none for the action, in the same transaction.
    """

    _registry_lock = threading.Lock()
    _ticket_locks = weakref.WeakValueDictionary()

    def __init__(self, db: Session):
        self.db = db

    @classmethod
    def lock_for(cls, ticket_id: int):
        with cls._registry_lock:
            lock = cls._ticket_locks.get(ticket_id)
            if lock is None:
                lock = threading.Lock()
                cls._ticket_locks[ticket_id] = lock
            return lock

    def decide(
        self,
        ticket_id: int,
        action_type: ActionType,
        decision: DecisionOutcome,
        actor: ActingUser,
        comment: Optional[str] = None,
        patch: Optional[PassengerFormPatch] = None
    ) -> DecisionResponse:
        action = ActionType(action_type).value
        outcome = DecisionOutcome(decision).value

        with self.lock_for(ticket_id):
            try:
                ticket = self.db.query(Ticket).filter(
                    Ticket.id == ticket_id,
                    Ticket.deleted_at.is_(None)
                ).with_for_update().first()
                if ticket is None:
                    raise TicketNotFound(f"Ticket {ticket_id} not found")

                warning = self._check_preconditions(ticket, action, actor)

                if patch is not None:
                    changed = apply_passenger_form_patch(self.db, ticket.passenger_form, patch)
                    logger.info("Passenger form of ticket %s updated before decision (%s)", ticket.ticket_no, ", ".join(changed))

                new_status = f"{outcome}_{action}"
                self._record(ticket, action, outcome, new_status, actor, comment)
                self.db.flush()
                logger.info("Ticket %s moved to %s by user %s", ticket.ticket_no, new_status, actor.user_id)

                children_updated = self._propagate_to_children(ticket, action, outcome, new_status, actor, comment)

                self.db.commit()
            except BorderControlError:
                self.db.rollback()
                raise
            except IntegrityError as e:
                self.db.rollback()
                logger.warning("Concurrent %s decision on ticket %s rejected by unique constraint", action, ticket_id)
                raise DuplicateDecision(
                    f"This ticket has already been processed for the action type '{action}'"
                ) from e
            except Exception as e:
                self.db.rollback()
                logger.exception("Decision on ticket %s failed, transaction rolled back", ticket_id)
                raise DecisionPersistenceFailed() from e

        return DecisionResponse(
            ticket_no=ticket.ticket_no,
            status=new_status,
            decision=outcome,
            action_type=action,
            warning=warning,
            children_updated=children_updated
        )

    def _check_preconditions(self, ticket: Ticket, action: str, actor: ActingUser) -> Optional[str]:
        """Raise for any rule the decision breaks; return the non-fatal warning, if any"""
        if actor.port_id is None:
            raise NoPortAssigned()

        form = ticket.passenger_form
        if form is None:
            raise MissingPassengerForm(f"Passenger form not found for ticket {ticket.ticket_no}")
        if form.port_of_entry_id != actor.port_id:
            raise WrongPort()

        if decision_exists(self.db, ticket.id, action):
            raise DuplicateDecision(
                f"This ticket has already been processed for the action type '{action}'"
            )

        if action == ActionType.ARRIVAL.value and (
            ticket.status in DEPARTURE_TERMINAL_STATUSES
            or decision_exists(self.db, ticket.id, ActionType.DEPARTURE.value)
        ):
            raise AlreadyFinalized(f"Ticket {ticket.ticket_no} has already been recorded for a departure")

        if action == ActionType.DEPARTURE.value and not decision_exists(self.db, ticket.id, ActionType.ARRIVAL.value):
            return NO_ARRIVAL_WARNING
        return None

    def _record(
        self,
        ticket: Ticket,
        action: str,
        outcome: str,
        new_status: str,
        actor: ActingUser,
        comment: Optional[str]
    ) -> Decision:
        now = utcnow()
        ticket.status = new_status
        ticket.status_changed_at = now
        ticket.updated_at = now

        record = Decision(
            ticket_id=ticket.id,
            user_id=actor.user_id,
            action_type=action,
            decision=outcome,
            port_of_action_id=actor.port_id,
            comment=comment,
            created_at=now
        )
        self.db.add(record)
        return record

    def _propagate_to_children(
        self,
        parent: Ticket,
        action: str,
        outcome: str,
        new_status: str,
        actor: ActingUser,
        comment: Optional[str]
    ) -> List[str]:
        children = self.db.query(Ticket).filter(
            Ticket.parent_id == parent.id
        ).order_by(Ticket.family_position, Ticket.id).with_for_update().all()
        if not children:
            return []

        if comment:
            child_comment = f"Inherited from parent ticket {parent.ticket_no}: {comment}"
        else:
            child_comment = f"Decision inherited from parent ticket {parent.ticket_no}"

        updated = []
        for child in children:
            if child.deleted_at is not None:
                logger.warning("Child ticket %s of %s is deleted, skipped", child.ticket_no, parent.ticket_no)
                continue
            if decision_exists(self.db, child.id, action):
                logger.info("Child ticket %s already has a %s decision, skipped", child.ticket_no, action)
                continue
            if action == ActionType.ARRIVAL.value and child.status in DEPARTURE_TERMINAL_STATUSES:
                logger.warning("Child ticket %s already left the country, arrival skipped", child.ticket_no)
                continue

            self._record(child, action, outcome, new_status, actor, child_comment)
            updated.append(child.ticket_no)
            logger.info("Decision recorded for child ticket %s (inherited from %s)", child.ticket_no, parent.ticket_no)

        self.db.flush()
        return updated
