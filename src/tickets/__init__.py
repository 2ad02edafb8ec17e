"""
Ticket Module

Traveler tickets for border crossings:

- numbering.py: per-prefix ticket number allocation (J, C) and validation of
  externally minted mixed-service numbers (G)
- service.py: ticket creation with family grouping, traveler lookup, agent
  edits, soft delete and purge
- router.py: traveler, agent and admin endpoints
- schemas.py: Pydantic models and the status / action enumerations shared
  with the decision workflow
"""

from .router import router, agent_router, admin_router
from .numbering import TicketNumberGenerator, service_type
from .service import TicketService
from .schemas import (
    PassengerType, TicketStatus, ActionType, DecisionOutcome,
    TicketCreate, TicketCreateResponse, PassengerFormPatch, TicketDetail
)

__all__ = [
    "router",
    "agent_router",
    "admin_router",
    "TicketNumberGenerator",
    "service_type",
    "TicketService",
    "PassengerType",
    "TicketStatus",
    "ActionType",
    "DecisionOutcome",
    "TicketCreate",
    "TicketCreateResponse",
    "PassengerFormPatch",
    "TicketDetail",
]
