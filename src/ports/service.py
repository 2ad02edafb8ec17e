from sqlalchemy.orm import Session
from typing import List, Optional
from src.models import Port
from src.ports.schemas import PortStatus
from src.exceptions import UnknownPort

class PortService:
    @staticmethod
    def get_port_by_id(db: Session, port_id: int) -> Optional[Port]:
        """Get port by ID, active or not"""
        return db.query(Port).filter(Port.id == port_id).first()

    @staticmethod
    def get_port_by_code(db: Session, code: str) -> Optional[Port]:
        """Get port by its code, active or not"""
        return db.query(Port).filter(Port.code == code).first()

    @staticmethod
    def get_active_ports(db: Session) -> List[Port]:
        """All active ports ordered by code"""
        return db.query(Port).filter(
            Port.status == PortStatus.ACTIVE.value
        ).order_by(Port.code).all()

    @staticmethod
    def resolve_active_port(db: Session, code: str) -> Port:
        """Resolve a port code to an active port or raise UnknownPort"""
        port = PortService.get_port_by_code(db, code)
        if port is None or port.status != PortStatus.ACTIVE.value:
            raise UnknownPort(f"Port '{code}' not found or inactive")
        return port

    @staticmethod
    def resolve_active_port_id(db: Session, port_id: int) -> Port:
        port = PortService.get_port_by_id(db, port_id)
        if port is None or port.status != PortStatus.ACTIVE.value:
            raise UnknownPort(f"Port {port_id} not found or inactive")
        return port
