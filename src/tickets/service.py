import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from src.config import settings
from src.models import Ticket, PassengerForm, Decision, utcnow
from src.ports.service import PortService
from src.tickets.numbering import TicketNumberGenerator
from src.tickets.schemas import (
    TicketCreate, TicketCreateResponse, PassengerFormPatch, FamilyMember,
    PassengerType, TicketStatus
)
from src.exceptions import (
    BorderControlError, MissingParameters, MissingPassengerForm, TicketNotFound,
    TicketNumberTaken, TicketPersistenceFailed
)

logger = logging.getLogger(__name__)

# Fields a family member inherits from the parent's form unless overridden
INHERITED_FORM_FIELDS = (
    "birth_place", "nationality", "carrier_number", "company", "travel_purpose",
    "travel_date", "residence_street", "residence_city", "residence_state",
    "residence_postal_code", "residence_country", "local_street", "local_city",
    "local_phone",
)

# Fields the family member payload may override
MEMBER_OVERRIDE_FIELDS = (
    "first_name", "last_name", "initials", "date_of_birth", "sex", "birth_place",
    "nationality", "passport_number",
)

REQUIRED_FORM_FIELDS = ("last_name", "first_name", "date_of_birth", "sex", "port_of_entry_id")


def live_tickets(db: Session):
    """Ticket query that hides soft-deleted rows"""
    return db.query(Ticket).filter(Ticket.deleted_at.is_(None))


def apply_passenger_form_patch(db: Session, form: PassengerForm, patch: PassengerFormPatch) -> List[str]:
    """Merge an explicit patch into a passenger form and return the changed field names"""
    update_data = patch.model_dump(exclude_unset=True, mode="json")

    # Identity columns and the port of entry cannot be cleared
    for field in REQUIRED_FORM_FIELDS:
        if field in update_data and update_data[field] is None:
            update_data.pop(field)

    if "port_of_entry_id" in update_data:
        PortService.resolve_active_port_id(db, update_data["port_of_entry_id"])

    # Dates come back as ISO strings in json mode; keep the typed values
    for field in ("date_of_birth", "travel_date", "visa_issued_at"):
        if field in update_data:
            update_data[field] = getattr(patch, field)

    if "family_members" in update_data:
        members = update_data["family_members"] or []
        update_data["number_of_family_members"] = len(members)

    for field, value in update_data.items():
        setattr(form, field, value)

    return sorted(update_data.keys())


class TicketService:
    """Traveler ticket registration, lookup and administrative removal"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_ticket(self, request: TicketCreate) -> TicketCreateResponse:
        """Create a ticket and its passenger form, plus one child ticket per family member.

        Everything happens in a single transaction: if any child fails, the
        parent and every child created so far are rolled back.
        """
        prefix = settings.TICKET_PREFIX

        with TicketNumberGenerator.lock_for(prefix):
            try:
                port = PortService.resolve_active_port(self.db, request.port_of_entry)

                if request.ticket_no:
                    parent_no = TicketNumberGenerator.validate_external_number(self.db, request.ticket_no)
                else:
                    parent_no = TicketNumberGenerator.next_number(self.db, prefix)

                form_data = self._base_form_data(request, port.id)
                parent = self._create_ticket_row(
                    parent_no, request.passenger_type.value, form_data, email=request.email
                )

                children = []
                for position, member in enumerate(request.family_members, start=1):
                    child = self._create_child_ticket(parent, position, member, form_data, prefix)
                    children.append(child)

                if request.family_members:
                    parent.passenger_form.family_members = [
                        member.model_dump(mode="json") for member in request.family_members
                    ]
                    parent.passenger_form.number_of_family_members = len(request.family_members)

                self.db.commit()
            except BorderControlError:
                self.db.rollback()
                raise
            except IntegrityError as e:
                self.db.rollback()
                if request.ticket_no:
                    # Mixed numbers are not covered by the prefix lock; the unique index decides
                    logger.warning("Ticket number %s was taken by a concurrent registration", request.ticket_no)
                    raise TicketNumberTaken(f"Ticket number {request.ticket_no} is already in use") from e
                logger.exception("Ticket creation failed, transaction rolled back")
                raise TicketPersistenceFailed() from e
            except Exception as e:
                self.db.rollback()
                logger.exception("Ticket creation failed, transaction rolled back")
                raise TicketPersistenceFailed() from e

        children_nos = [child.ticket_no for child in children]
        logger.info(
            "Ticket %s created at port %s with %d family member ticket(s)",
            parent_no, port.code, len(children_nos)
        )
        return TicketCreateResponse(
            ticket_no=parent_no,
            passport_number=request.passport_number,
            children_tickets=children_nos
        )

    def _base_form_data(self, request: TicketCreate, port_id: int) -> Dict[str, Any]:
        form_data = request.model_dump(
            exclude={"passenger_type", "port_of_entry", "email", "ticket_no", "family_members"}
        )
        for field in ("sex", "travel_purpose"):
            if form_data.get(field) is not None:
                form_data[field] = getattr(request, field).value
        if request.passenger_type == PassengerType.NATIONAL:
            form_data["nationality"] = settings.NATIONAL_NATIONALITY
        form_data["port_of_entry_id"] = port_id
        return form_data

    def _create_ticket_row(
        self,
        ticket_no: str,
        passenger_type: str,
        form_data: Dict[str, Any],
        email: Optional[str] = None,
        parent: Optional[Ticket] = None,
        family_position: Optional[int] = None
    ) -> Ticket:
        now = utcnow()
        ticket = Ticket(
            ticket_no=ticket_no,
            status=TicketStatus.DRAFT.value,
            status_changed_at=now,
            passenger_type=passenger_type,
            email=email,
            parent=parent,
            family_position=family_position,
        )
        ticket.passenger_form = PassengerForm(**form_data)
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def _create_child_ticket(
        self,
        parent: Ticket,
        position: int,
        member: FamilyMember,
        parent_form_data: Dict[str, Any],
        prefix: str
    ) -> Ticket:
        """Child tickets always use the standalone prefix, never a mixed number"""
        child_no = TicketNumberGenerator.next_number(self.db, prefix)

        form_data = {field: parent_form_data.get(field) for field in INHERITED_FORM_FIELDS}
        form_data["port_of_entry_id"] = parent_form_data["port_of_entry_id"]
        form_data["visa_number"] = None
        form_data["visa_issued_at"] = None

        overrides = member.model_dump(include=set(MEMBER_OVERRIDE_FIELDS), exclude_none=True)
        if "sex" in overrides:
            overrides["sex"] = member.sex.value
        form_data.update(overrides)

        passenger_type = (member.passenger_type or PassengerType(parent.passenger_type))
        if passenger_type == PassengerType.NATIONAL:
            form_data["nationality"] = settings.NATIONAL_NATIONALITY

        child = self._create_ticket_row(
            child_no, passenger_type.value, form_data, parent=parent, family_position=position
        )
        logger.debug("Child ticket %s linked to parent %s", child_no, parent.ticket_no)
        return child

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = live_tickets(self.db).options(
            joinedload(Ticket.passenger_form).joinedload(PassengerForm.port_of_entry),
            selectinload(Ticket.decisions),
            selectinload(Ticket.children),
        ).filter(Ticket.id == ticket_id).first()
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")
        return ticket

    def find_by_number_and_passport(self, ticket_no: Optional[str], passport_number: Optional[str]) -> Ticket:
        """Traveler lookup: both the ticket number and the passport number must match"""
        if not ticket_no or not passport_number:
            raise MissingParameters("Parameters ticket_no and passport_number are required")

        ticket = live_tickets(self.db).join(Ticket.passenger_form).options(
            joinedload(Ticket.passenger_form).joinedload(PassengerForm.port_of_entry),
            selectinload(Ticket.decisions),
        ).filter(
            Ticket.ticket_no == ticket_no.strip().upper(),
            PassengerForm.passport_number == passport_number.strip()
        ).first()
        if ticket is None:
            raise TicketNotFound("Ticket not found or passport number incorrect")
        return ticket

    def get_decisions(self, ticket_id: int) -> List[Decision]:
        ticket = self.get_ticket(ticket_id)
        return list(ticket.decisions)

    def list_tickets(
        self,
        skip: int = 0,
        limit: int = 50,
        status: Optional[str] = None,
        passenger_type: Optional[str] = None
    ) -> Tuple[List[Ticket], int]:
        """Tickets for reporting consumers, newest first"""
        query = live_tickets(self.db)
        if status:
            query = query.filter(Ticket.status == status)
        if passenger_type:
            query = query.filter(Ticket.passenger_type == passenger_type)

        total = query.count()
        tickets = query.options(
            joinedload(Ticket.passenger_form),
            selectinload(Ticket.decisions),
            selectinload(Ticket.children),
        ).order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(skip).limit(limit).all()
        return tickets, total

    # ------------------------------------------------------------------
    # Agent edit before decision
    # ------------------------------------------------------------------
    def update_passenger_form(self, ticket_id: int, patch: PassengerFormPatch) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        if ticket.passenger_form is None:
            raise MissingPassengerForm(f"Passenger form not found for ticket {ticket.ticket_no}")

        try:
            changed = apply_passenger_form_patch(self.db, ticket.passenger_form, patch)
            ticket.updated_at = utcnow()
            self.db.commit()
        except BorderControlError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Passenger form update failed for ticket %s", ticket_id)
            raise TicketPersistenceFailed("An error occurred while updating the ticket") from e

        logger.info("Ticket %s passenger form updated (%s)", ticket.ticket_no, ", ".join(changed) or "no changes")
        self.db.refresh(ticket)
        return ticket

    # ------------------------------------------------------------------
    # Administrative removal
    # ------------------------------------------------------------------
    def soft_delete_ticket(self, ticket_id: int) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        ticket.deleted_at = utcnow()
        self.db.commit()
        logger.info("Ticket %s soft-deleted", ticket.ticket_no)
        return ticket

    def purge_ticket(self, ticket_id: int) -> str:
        """Hard delete a ticket with its passenger form and decisions.

        Children of a purged parent are detached and become standalone tickets.
        Soft-deleted tickets can be purged too.
        """
        ticket = self.db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if ticket is None:
            raise TicketNotFound(f"Ticket {ticket_id} not found")

        ticket_no = ticket.ticket_no
        try:
            for child in list(ticket.children):
                child.parent = None
                child.family_position = None
            self.db.delete(ticket)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Purge of ticket %s failed", ticket_no)
            raise TicketPersistenceFailed("An error occurred while purging the ticket") from e

        logger.info("Ticket %s purged with its passenger form and decisions", ticket_no)
        return ticket_no
