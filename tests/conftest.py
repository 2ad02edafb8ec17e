import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database import Base, build_engine, get_db
from src.main import app
from src.models import Ticket
from src.auth.schemas import ActingUser
from src.auth.utils import create_access_token
from src.tickets.schemas import TicketCreate
from src.tickets.service import TicketService
from tests.factories import build_ticket_payload, seed_ports_and_users


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def seeded(db):
    return seed_ports_and_users(db)


@pytest.fixture
def ports(seeded):
    return seeded[0]


@pytest.fixture
def users(seeded):
    return seeded[1]


@pytest.fixture
def agent(users):
    user = users["agent"]
    return ActingUser(user_id=user.id, role=user.role, port_id=user.port_id)


@pytest.fixture
def ticket_payload():
    return build_ticket_payload


@pytest.fixture
def create_ticket(db, ports):
    """Create a ticket through the service and return the parent row"""
    def _create(**overrides):
        response = TicketService(db).create_ticket(TicketCreate(**build_ticket_payload(**overrides)))
        return db.query(Ticket).filter(Ticket.ticket_no == response.ticket_no).one()

    return _create


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(users):
    def _headers(role_key="agent"):
        token = create_access_token({"sub": str(users[role_key].id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file database, for tests that need real concurrent connections"""
    engine = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()
