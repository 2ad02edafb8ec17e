import asyncio

from sqlalchemy import inspect

from src import main
from src.config import settings
from src.database import build_engine
from src.models import Ticket, Decision

API = settings.API_V1_STR


def ticket_id_for(db, ticket_no):
    return db.query(Ticket).filter(Ticket.ticket_no == ticket_no).one().id


def test_end_to_end_arrival_and_departure(client, db, ticket_payload, auth_headers):
    headers = auth_headers()

    response = client.post(f"{API}/tickets", json=ticket_payload())
    assert response.status_code == 201
    assert response.json()["ticket_no"] == "J00000001"
    ticket_id = ticket_id_for(db, "J00000001")

    response = client.post(f"{API}/agent/scan/J00000001", json={"action_type": "arrival"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["ticket"]["status"] == "pending"

    decision = {"ticket_id": ticket_id, "action_type": "arrival", "decision": "accepted"}
    response = client.post(f"{API}/agent/decide", json=decision, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "accepted_arrival"
    assert len(client.get(f"{API}/tickets/{ticket_id}/decisions", headers=headers).json()) == 1

    response = client.post(f"{API}/agent/decide", json=decision, headers=headers)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "DuplicateDecision"

    response = client.post(f"{API}/agent/scan/J00000001", json={"action_type": "departure"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["ticket"]["status"] == "pending"

    decision.update(action_type="departure", decision="rejected")
    response = client.post(f"{API}/agent/decide", json=decision, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "rejected_departure"
    assert response.json()["warning"] is None

    history = client.get(f"{API}/tickets/{ticket_id}/decisions", headers=headers).json()
    assert [(d["action_type"], d["decision"]) for d in history] == [
        ("arrival", "accepted"), ("departure", "rejected")
    ]
    assert db.query(Decision).count() == 2


def test_agent_endpoints_require_a_valid_token(client, users, ticket_payload):
    client.post(f"{API}/tickets", json=ticket_payload())

    assert client.post(f"{API}/agent/scan/J00000001", json={"action_type": "arrival"}).status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.post(f"{API}/agent/scan/J00000001", json={"action_type": "arrival"}, headers=bad).status_code == 401


def test_ticket_reads_by_id_require_a_token(client, db, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    ticket_id = ticket_id_for(db, "J00000001")

    for path in (f"/tickets/{ticket_id}", f"/tickets/{ticket_id}/decisions", f"/tickets/{ticket_id}/overstay"):
        assert client.get(f"{API}{path}").status_code == 401
        assert client.get(f"{API}{path}", headers=auth_headers()).status_code == 200

    response = client.get(f"{API}/tickets/{ticket_id}", headers=auth_headers())
    assert response.json()["passenger_form"]["passport_number"] == "P1234567"


def test_held_lease_reports_remaining_seconds(client, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    client.post(f"{API}/agent/scan/J00000001", json={"action_type": "arrival"}, headers=auth_headers())

    response = client.post(
        f"{API}/agent/scan/J00000001", json={"action_type": "arrival"}, headers=auth_headers("other_agent")
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "LockHeld"
    assert detail["remaining_seconds"] > 0


def test_decision_from_wrong_port_is_forbidden(client, db, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    decision = {"ticket_id": ticket_id_for(db, "J00000001"), "action_type": "arrival", "decision": "accepted"}

    response = client.post(f"{API}/agent/decide", json=decision, headers=auth_headers("other_agent"))
    assert response.status_code == 403
    response = client.post(f"{API}/agent/decide", json=decision, headers=auth_headers("portless"))
    assert response.status_code == 403


def test_family_creation_and_lookup(client, ports, ticket_payload):
    members = [{"first_name": "Paul", "last_name": "Doe", "date_of_birth": "2015-02-03", "sex": "M"}]
    response = client.post(f"{API}/tickets", json=ticket_payload(family_members=members))
    assert response.status_code == 201
    assert response.json()["children_tickets"] == ["J00000002"]

    response = client.get(f"{API}/tickets/lookup", params={"ticket_no": "J00000001", "passport_number": "P1234567"})
    assert response.status_code == 200
    ticket = response.json()["ticket"]
    assert ticket["children_no"] == ["J00000002"]
    assert ticket["family_role"] == "parent"
    assert ticket["service_type"] == "immigration"
    assert ticket["passenger_form"]["port_of_entry"]["code"] == "PAP-A"

    assert client.get(f"{API}/tickets/lookup", params={"ticket_no": "J00000001"}).status_code == 400
    response = client.get(f"{API}/tickets/lookup", params={"ticket_no": "J00000001", "passport_number": "X"})
    assert response.status_code == 404


def test_invalid_payloads_are_rejected(client, ports, ticket_payload):
    assert client.post(f"{API}/tickets", json=ticket_payload(sex="X")).status_code == 422
    assert client.post(f"{API}/tickets", json=ticket_payload(email="not-an-email")).status_code == 422
    assert client.post(f"{API}/tickets", json=ticket_payload(port_of_entry="NOPE")).status_code == 404
    assert client.post(f"{API}/tickets", json=ticket_payload(ticket_no="J00000001")).status_code == 422


def test_edit_passenger_form_before_decision(client, db, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    ticket_id = ticket_id_for(db, "J00000001")

    response = client.put(
        f"{API}/agent/tickets/{ticket_id}/passenger-form",
        json={"local_city": "Jacmel"},
        headers=auth_headers()
    )
    assert response.status_code == 200
    assert response.json()["passenger_form"]["local_city"] == "Jacmel"

    response = client.put(
        f"{API}/agent/tickets/{ticket_id}/passenger-form",
        json={"favourite_colour": "blue"},
        headers=auth_headers()
    )
    assert response.status_code == 422


def test_overstay_endpoint(client, db, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    client.post(f"{API}/tickets", json=ticket_payload(passenger_type="national", passport_number="HT000001"))

    response = client.get(f"{API}/tickets/{ticket_id_for(db, 'J00000001')}/overstay", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["in_country"] is False

    response = client.get(f"{API}/tickets/{ticket_id_for(db, 'J00000002')}/overstay", headers=auth_headers())
    assert response.status_code == 422


def test_admin_soft_delete_and_purge(client, db, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    ticket_id = ticket_id_for(db, "J00000001")

    assert client.delete(f"{API}/admin/tickets/{ticket_id}", headers=auth_headers()).status_code == 403

    response = client.delete(f"{API}/admin/tickets/{ticket_id}", headers=auth_headers("admin"))
    assert response.status_code == 200
    assert response.json()["deleted_at"] is not None
    assert client.get(f"{API}/tickets/{ticket_id}", headers=auth_headers()).status_code == 404

    response = client.delete(f"{API}/admin/tickets/{ticket_id}/purge", headers=auth_headers("admin"))
    assert response.status_code == 200
    assert response.json()["ticket_no"] == "J00000001"
    assert db.query(Ticket).count() == 0


def test_admin_ticket_listing(client, ticket_payload, auth_headers):
    client.post(f"{API}/tickets", json=ticket_payload())
    client.post(f"{API}/tickets", json=ticket_payload(passenger_type="national", passport_number="HT000001"))

    response = client.get(f"{API}/admin/tickets", params={"passenger_type": "national"}, headers=auth_headers("admin"))
    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["data"][0]["ticket_no"] == "J00000002"


def test_ports_and_health(client, ports):
    response = client.get(f"{API}/ports/")
    assert response.status_code == 200
    assert [p["code"] for p in response.json()["data"]] == ["CAP-A", "PAP-A"]

    assert client.get("/health").json() == {"status": "healthy"}


def test_lifespan_creates_missing_tables(tmp_path, monkeypatch):
    file_engine = build_engine(f"sqlite:///{tmp_path / 'startup.db'}")
    monkeypatch.setattr(main, "engine", file_engine)

    async def start_and_stop():
        async with main.lifespan(main.app):
            pass

    asyncio.run(start_and_stop())

    assert {"tickets", "decisions", "ticket_sequences"} <= set(inspect(file_engine).get_table_names())
    file_engine.dispose()
