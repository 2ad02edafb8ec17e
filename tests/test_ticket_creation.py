import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.config import settings
from src.models import Ticket, PassengerForm, Decision
from src.tickets.numbering import TicketNumberGenerator
from src.tickets.schemas import TicketCreate, PassengerFormPatch
from src.tickets.service import TicketService
from src.exceptions import (
    UnknownPort, TicketPersistenceFailed, NumberSpaceExhausted, TicketNumberTaken,
    InvalidTicketNumber, MissingParameters, TicketNotFound
)
from tests.factories import build_ticket_payload, seed_ports_and_users

FAMILY = [
    {"first_name": "Paul", "last_name": "Doe", "date_of_birth": "2015-02-03", "sex": "M", "passport_number": "P7654321"},
    {"first_name": "Anna", "last_name": "Doe", "date_of_birth": "2018-07-09", "sex": "F"},
]


def test_standalone_ticket_starts_in_draft(db, ports, ticket_payload):
    response = TicketService(db).create_ticket(TicketCreate(**ticket_payload()))

    assert response.ticket_no == "J00000001"
    assert response.passport_number == "P1234567"
    assert response.children_tickets == []

    ticket = db.query(Ticket).filter(Ticket.ticket_no == "J00000001").one()
    assert ticket.status == "draft"
    assert ticket.family_role == "standalone"
    assert ticket.service_type == "immigration"
    assert ticket.passenger_form.port_of_entry_id == ports["PAP-A"].id
    assert ticket.passenger_form.nationality == "American"
    assert ticket.passenger_form.number_of_family_members == 0


def test_national_traveler_gets_national_nationality(db, ports, ticket_payload):
    response = TicketService(db).create_ticket(
        TicketCreate(**ticket_payload(passenger_type="national", nationality="Other"))
    )
    form = db.query(PassengerForm).join(Ticket).filter(Ticket.ticket_no == response.ticket_no).one()
    assert form.nationality == settings.NATIONAL_NATIONALITY


def test_family_members_become_child_tickets(db, ports, ticket_payload):
    response = TicketService(db).create_ticket(TicketCreate(**ticket_payload(family_members=FAMILY)))

    assert response.ticket_no == "J00000001"
    assert response.children_tickets == ["J00000002", "J00000003"]

    parent = db.query(Ticket).filter(Ticket.ticket_no == "J00000001").one()
    assert parent.family_role == "parent"
    assert parent.parent_no is None
    assert parent.children_no == ["J00000002", "J00000003"]
    assert parent.passenger_form.number_of_family_members == 2
    assert [m["first_name"] for m in parent.passenger_form.family_members] == ["Paul", "Anna"]

    paul, anna = parent.children
    assert paul.parent_no == "J00000001"
    assert paul.children_no == []
    assert paul.family_role == "child"
    assert paul.status == "draft"
    assert paul.family_position == 1

    # Identity from the member, travel and residence from the parent
    assert paul.passenger_form.first_name == "Paul"
    assert paul.passenger_form.passport_number == "P7654321"
    assert paul.passenger_form.sex == "M"
    assert paul.passenger_form.carrier_number == "AA123"
    assert paul.passenger_form.residence_city == "Miami"
    assert paul.passenger_form.port_of_entry_id == ports["PAP-A"].id
    assert anna.passenger_form.passport_number is None
    assert anna.passenger_form.nationality == "American"


def test_mixed_ticket_keeps_supplied_number_and_children_use_standalone_prefix(db, ports, ticket_payload):
    response = TicketService(db).create_ticket(
        TicketCreate(**ticket_payload(ticket_no="g0000abcd", family_members=FAMILY[:1]))
    )

    assert response.ticket_no == "G0000ABCD"
    assert response.children_tickets == ["J00000001"]
    parent = db.query(Ticket).filter(Ticket.ticket_no == "G0000ABCD").one()
    assert parent.service_type == "mixte"


def test_mixed_number_must_be_unused_and_well_formed(db, ports, ticket_payload):
    service = TicketService(db)
    service.create_ticket(TicketCreate(**ticket_payload(ticket_no="G00000001")))

    with pytest.raises(TicketNumberTaken):
        service.create_ticket(TicketCreate(**ticket_payload(ticket_no="G00000001")))
    with pytest.raises(InvalidTicketNumber):
        service.create_ticket(TicketCreate(**ticket_payload(ticket_no="J00000099")))
    assert db.query(Ticket).count() == 1


def test_mixed_number_claimed_concurrently_is_reported_as_taken(db, ports, ticket_payload, monkeypatch):
    service = TicketService(db)
    service.create_ticket(TicketCreate(**ticket_payload(ticket_no="G00000001")))

    # Another registration for the same number passed the availability check first
    monkeypatch.setattr(
        TicketNumberGenerator, "validate_external_number", classmethod(lambda cls, db, ticket_no: ticket_no)
    )

    with pytest.raises(TicketNumberTaken):
        service.create_ticket(TicketCreate(**ticket_payload(ticket_no="G00000001", passport_number="P0000002")))
    assert db.query(Ticket).count() == 1
    assert db.query(PassengerForm).count() == 1


@pytest.mark.parametrize("code", ["NOPE", "JAC-S"])
def test_unknown_or_inactive_port_is_rejected(db, ports, ticket_payload, code):
    with pytest.raises(UnknownPort):
        TicketService(db).create_ticket(TicketCreate(**ticket_payload(port_of_entry=code)))
    assert db.query(Ticket).count() == 0


def test_family_creation_rolls_back_when_third_child_fails(db, ports, ticket_payload, monkeypatch):
    original = TicketService._create_child_ticket
    calls = {"count": 0}

    def fail_on_third_child(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 3:
            raise RuntimeError("disk full")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(TicketService, "_create_child_ticket", fail_on_third_child)
    family = FAMILY + [{"first_name": "Luc", "last_name": "Doe", "date_of_birth": "2020-01-01", "sex": "M"}]

    with pytest.raises(TicketPersistenceFailed):
        TicketService(db).create_ticket(TicketCreate(**ticket_payload(family_members=family)))

    assert db.query(Ticket).count() == 0
    assert db.query(PassengerForm).count() == 0

    # Numbers consumed by the failed attempt are released with the rollback
    monkeypatch.setattr(TicketService, "_create_child_ticket", original)
    response = TicketService(db).create_ticket(TicketCreate(**ticket_payload()))
    assert response.ticket_no == "J00000001"


def test_domain_error_during_family_creation_propagates_unchanged(db, ports, ticket_payload, monkeypatch):
    original = TicketNumberGenerator.next_number.__func__
    calls = {"count": 0}

    def exhaust_on_third_number(cls, db, prefix):
        calls["count"] += 1
        if calls["count"] == 3:
            raise NumberSpaceExhausted()
        return original(cls, db, prefix)

    monkeypatch.setattr(TicketNumberGenerator, "next_number", classmethod(exhaust_on_third_number))

    with pytest.raises(NumberSpaceExhausted):
        TicketService(db).create_ticket(TicketCreate(**ticket_payload(family_members=FAMILY)))
    assert db.query(Ticket).count() == 0


def test_concurrent_creations_get_distinct_numbers(file_sessions):
    setup = file_sessions()
    seed_ports_and_users(setup)
    setup.close()

    workers = 8
    barrier = threading.Barrier(workers)

    def create(i):
        session = file_sessions()
        try:
            barrier.wait()
            payload = build_ticket_payload(passport_number=f"P{i:07d}")
            return TicketService(session).create_ticket(TicketCreate(**payload)).ticket_no
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        numbers = list(pool.map(create, range(workers)))

    assert len(set(numbers)) == workers
    assert sorted(numbers) == [f"J{i:08X}" for i in range(1, workers + 1)]


def test_lookup_requires_number_and_matching_passport(db, create_ticket):
    ticket = create_ticket()
    service = TicketService(db)

    assert service.find_by_number_and_passport(" j00000001 ", "P1234567").id == ticket.id
    with pytest.raises(MissingParameters):
        service.find_by_number_and_passport("J00000001", None)
    with pytest.raises(MissingParameters):
        service.find_by_number_and_passport("", "P1234567")
    with pytest.raises(TicketNotFound):
        service.find_by_number_and_passport("J00000001", "WRONG")


def test_soft_deleted_ticket_is_hidden_and_its_number_never_reused(db, create_ticket):
    ticket = create_ticket()
    service = TicketService(db)

    service.soft_delete_ticket(ticket.id)

    with pytest.raises(TicketNotFound):
        service.get_ticket(ticket.id)
    with pytest.raises(TicketNotFound):
        service.find_by_number_and_passport("J00000001", "P1234567")
    assert create_ticket().ticket_no == "J00000002"


def test_purge_removes_form_and_decisions_and_detaches_children(db, create_ticket, agent):
    from src.decisions.decision_service import DecisionRecorder

    parent = create_ticket(family_members=FAMILY)
    parent_id = parent.id
    DecisionRecorder(db).decide(parent_id, "arrival", "accepted", agent)

    assert TicketService(db).purge_ticket(parent_id) == "J00000001"

    assert db.query(Ticket).filter(Ticket.id == parent_id).first() is None
    assert db.query(PassengerForm).filter(PassengerForm.ticket_id == parent_id).count() == 0
    assert db.query(Decision).filter(Decision.ticket_id == parent_id).count() == 0

    children = db.query(Ticket).order_by(Ticket.ticket_no).all()
    assert [c.ticket_no for c in children] == ["J00000002", "J00000003"]
    assert all(c.parent_id is None and c.family_role == "standalone" for c in children)
    assert db.query(Decision).count() == 2


def test_update_passenger_form_patches_only_given_fields(db, create_ticket, ports):
    ticket = create_ticket()
    patch = PassengerFormPatch(
        local_city="Jacmel",
        port_of_entry_id=ports["CAP-A"].id,
        declared_items=[{"description": "Laptop", "quantity": 1, "value": 900}],
        family_members=[FAMILY[1]]
    )

    updated = TicketService(db).update_passenger_form(ticket.id, patch)

    form = updated.passenger_form
    assert form.local_city == "Jacmel"
    assert form.local_street == "12 Rue Capois"
    assert form.port_of_entry_id == ports["CAP-A"].id
    assert form.declared_items[0]["description"] == "Laptop"
    assert form.number_of_family_members == 1
    assert form.family_members[0]["date_of_birth"] == "2018-07-09"


def test_update_passenger_form_rejects_inactive_port(db, create_ticket, ports):
    ticket = create_ticket()

    with pytest.raises(UnknownPort):
        TicketService(db).update_passenger_form(ticket.id, PassengerFormPatch(port_of_entry_id=ports["JAC-S"].id))

    db.expire_all()
    assert db.query(PassengerForm).one().port_of_entry_id == ports["PAP-A"].id
