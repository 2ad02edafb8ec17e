from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from src.database import get_db
from src.ports.schemas import PortList, PortSummary
from src.ports.service import PortService

router = APIRouter()

@router.get("/", response_model=PortList)
def get_active_ports(db: Session = Depends(get_db)):
    """Return all active ports"""
    ports = PortService.get_active_ports(db)
    return PortList(data=[PortSummary.model_validate(port) for port in ports])
