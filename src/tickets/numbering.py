"""
Ticket number allocation.

Numbers are ``<prefix><8 uppercase hex digits>`` (``J00000001``). Each
generated prefix owns a row in ``ticket_sequences``; the row is seeded once
from the highest number already issued for the prefix, soft-deleted tickets
included, so a number is never reused.

Allocation must be linearized per prefix. Callers hold ``lock_for(prefix)``
for the whole creating transaction; on databases that support it the
sequence row is also read ``FOR UPDATE``, and the unique index on
``tickets.ticket_no`` rejects anything that slips through.
"""

import logging
import re
import threading
from collections import defaultdict
from typing import Dict, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models import Ticket, TicketSequence, SERVICE_TYPES
from src.exceptions import InvalidPrefix, InvalidTicketNumber, NumberSpaceExhausted, TicketNumberTaken

logger = logging.getLogger(__name__)

GENERATED_PREFIXES = ("J", "C")
MIXED_PREFIX = "G"
SUFFIX_DIGITS = 8
MAX_SEQUENCE_VALUE = 16 ** SUFFIX_DIGITS - 1

TICKET_NO_PATTERN = re.compile(r"^[A-Z][0-9A-F]{8}$")
MIXED_TICKET_NO_PATTERN = re.compile(r"^G[0-9A-F]{8}$")


def format_ticket_no(prefix: str, value: int) -> str:
    return f"{prefix}{value:0{SUFFIX_DIGITS}X}"


def parse_ticket_no(ticket_no: str) -> int:
    """Numeric value of a ticket number's hex suffix"""
    if not TICKET_NO_PATTERN.match(ticket_no or ""):
        raise InvalidTicketNumber(f"Invalid ticket number '{ticket_no}'")
    return int(ticket_no[1:], 16)


class TicketNumberGenerator:
    """Allocates unique, increasing ticket numbers per prefix"""

    _registry_lock = threading.Lock()
    _prefix_locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)

    @classmethod
    def lock_for(cls, prefix: str) -> threading.RLock:
        cls.validate_prefix(prefix)
        with cls._registry_lock:
            return cls._prefix_locks[prefix]

    @staticmethod
    def validate_prefix(prefix: str) -> str:
        if prefix not in GENERATED_PREFIXES:
            raise InvalidPrefix(f"Prefix '{prefix}' cannot be generated; expected one of {', '.join(GENERATED_PREFIXES)}")
        return prefix

    @classmethod
    def next_number(cls, db: Session, prefix: str) -> str:
        """Reserve the next number for ``prefix`` inside the caller's transaction"""
        cls.validate_prefix(prefix)

        with cls.lock_for(prefix):
            sequence = cls._load_sequence(db, prefix)
            next_value = sequence.last_value + 1
            if next_value > MAX_SEQUENCE_VALUE:
                raise NumberSpaceExhausted(f"Ticket number space exhausted for prefix '{prefix}'")
            sequence.last_value = next_value
            db.flush()

        ticket_no = format_ticket_no(prefix, next_value)
        logger.debug("Allocated ticket number %s", ticket_no)
        return ticket_no

    @classmethod
    def validate_external_number(cls, db: Session, ticket_no: str) -> str:
        """Check a mixed-service number minted by a collaborating subsystem"""
        if not MIXED_TICKET_NO_PATTERN.match(ticket_no or ""):
            raise InvalidTicketNumber(
                f"Mixed ticket number must be '{MIXED_PREFIX}' followed by {SUFFIX_DIGITS} uppercase hex digits"
            )
        exists = db.query(Ticket.id).filter(Ticket.ticket_no == ticket_no).first()
        if exists:
            raise TicketNumberTaken(f"Ticket number {ticket_no} is already in use")
        return ticket_no

    @classmethod
    def _load_sequence(cls, db: Session, prefix: str) -> TicketSequence:
        sequence = db.query(TicketSequence).filter(
            TicketSequence.prefix == prefix
        ).with_for_update().first()
        if sequence is not None:
            return sequence

        seed = cls._highest_issued(db, prefix)
        savepoint = db.begin_nested()
        try:
            sequence = TicketSequence(prefix=prefix, last_value=seed)
            db.add(sequence)
            db.flush()
            savepoint.commit()
        except IntegrityError:
            # Another process seeded the row first
            savepoint.rollback()
            sequence = db.query(TicketSequence).filter(
                TicketSequence.prefix == prefix
            ).with_for_update().one()
        return sequence

    @staticmethod
    def _highest_issued(db: Session, prefix: str) -> int:
        """Highest suffix already used for the prefix, soft-deleted tickets included"""
        rows: Iterable = db.query(Ticket.ticket_no).filter(
            Ticket.ticket_no.like(f"{prefix}%")
        ).order_by(Ticket.ticket_no.desc()).all()
        for (ticket_no,) in rows:
            try:
                return parse_ticket_no(ticket_no)
            except InvalidTicketNumber:
                logger.warning("Ignoring malformed ticket number %s while seeding prefix %s", ticket_no, prefix)
        return 0


def service_type(ticket_no: str) -> str:
    return SERVICE_TYPES.get((ticket_no or "")[:1], "unknown")
