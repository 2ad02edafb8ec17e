from pydantic import BaseModel
from typing import Optional
from enum import Enum

class UserRole(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    AGENT = "agent"

# Explicit caller context handed to every core operation
class ActingUser(BaseModel):
    user_id: int
    role: UserRole = UserRole.AGENT
    port_id: Optional[int] = None

    class Config:
        frozen = True
