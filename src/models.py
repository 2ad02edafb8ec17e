from datetime import datetime, timezone
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Date, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from src.database import Base

# SQLite only autoincrements INTEGER primary keys
IdType = BigInteger().with_variant(Integer, "sqlite")

# Ticket prefix to issuing service
SERVICE_TYPES = {"G": "mixte", "J": "immigration", "C": "customs"}


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable across SQLite and PostgreSQL rows"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# ================================
# Ports
# ================================
class Port(Base):
    __tablename__ = "ports"

    id = Column(IdType, primary_key=True, index=True)
    code = Column(String(10), unique=True, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)  # air | sea | land
    location = Column(String(255))
    status = Column(String(20), default="active", nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("User", back_populates="port")

# ================================
# Users (agents, supervisors, admins)
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(IdType, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(20), default="agent", nullable=False)
    status = Column(String(20), default="active", nullable=False)
    port_id = Column(IdType, ForeignKey("ports.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    port = relationship("Port", back_populates="users")
    decisions = relationship("Decision", back_populates="user")

# ================================
# Tickets & Family Grouping
# ================================
class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(IdType, primary_key=True, index=True)
    ticket_no = Column(String(9), unique=True, nullable=False, index=True)
    status = Column(String(30), default="draft", nullable=False, index=True)
    status_changed_at = Column(DateTime, default=utcnow, nullable=False)
    passenger_type = Column(String(20), nullable=False)
    email = Column(String(255))
    parent_id = Column(IdType, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True, index=True)
    family_position = Column(Integer)
    deleted_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    passenger_form = relationship("PassengerForm", back_populates="ticket", uselist=False, cascade="all, delete-orphan")
    decisions = relationship("Decision", back_populates="ticket", cascade="all, delete-orphan", order_by="Decision.created_at")
    parent = relationship("Ticket", remote_side=[id], back_populates="children")
    children = relationship("Ticket", back_populates="parent", order_by="Ticket.family_position")

    @property
    def parent_no(self):
        return self.parent.ticket_no if self.parent is not None else None

    @property
    def children_no(self):
        return [child.ticket_no for child in self.children]

    @property
    def family_role(self) -> str:
        if self.parent_id is not None:
            return "child"
        if self.children:
            return "parent"
        return "standalone"

    @property
    def service_type(self) -> str:
        return SERVICE_TYPES.get(self.ticket_no[:1], "unknown")

class PassengerForm(Base):
    __tablename__ = "passenger_forms"

    id = Column(IdType, primary_key=True, index=True)
    ticket_id = Column(IdType, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Identity
    last_name = Column(String(255), nullable=False)
    first_name = Column(String(255), nullable=False)
    initials = Column(String(20))
    date_of_birth = Column(Date, nullable=False)
    sex = Column(String(1), nullable=False)
    birth_place = Column(String(255))
    nationality = Column(String(255))
    passport_number = Column(String(255), index=True)

    # Travel
    carrier_number = Column(String(255))
    company = Column(String(255))
    port_of_entry_id = Column(IdType, ForeignKey("ports.id"), nullable=False)
    travel_purpose = Column(String(20))
    travel_date = Column(Date)
    visa_number = Column(String(255))
    visa_issued_at = Column(Date)

    # Residence abroad
    residence_street = Column(String(255))
    residence_city = Column(String(255))
    residence_state = Column(String(255))
    residence_postal_code = Column(String(50))
    residence_country = Column(String(255))

    # In-country address and contact
    local_street = Column(String(255))
    local_city = Column(String(255))
    local_phone = Column(String(255))

    # Opaque structured blobs, display only
    number_of_family_members = Column(Integer, default=0, nullable=False)
    family_members = Column(JSON)
    declared_items = Column(JSON)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    ticket = relationship("Ticket", back_populates="passenger_form")
    port_of_entry = relationship("Port")

class Decision(Base):
    __tablename__ = "decisions"
    __table_args__ = (
        UniqueConstraint("ticket_id", "action_type", name="uq_decisions_ticket_action"),
    )

    id = Column(IdType, primary_key=True, index=True)
    ticket_id = Column(IdType, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(IdType, ForeignKey("users.id"), nullable=False, index=True)
    action_type = Column(String(20), nullable=False)
    decision = Column(String(20), nullable=False)
    port_of_action_id = Column(IdType, ForeignKey("ports.id"), nullable=False, index=True)
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    ticket = relationship("Ticket", back_populates="decisions")
    user = relationship("User", back_populates="decisions")
    port_of_action = relationship("Port")

# ================================
# Ticket number sequences
# ================================
class TicketSequence(Base):
    __tablename__ = "ticket_sequences"

    prefix = Column(String(1), primary_key=True)
    last_value = Column(BigInteger, default=0, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
