from pydantic import BaseModel
from typing import List, Optional
from enum import Enum

class PortType(str, Enum):
    AIR = "air"
    SEA = "sea"
    LAND = "land"

class PortStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class PortSummary(BaseModel):
    id: int
    code: Optional[str] = None
    name: str
    type: PortType
    location: Optional[str] = None

    class Config:
        from_attributes = True

class PortList(BaseModel):
    data: List[PortSummary]
