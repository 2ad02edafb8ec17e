from sqlalchemy.orm import Session
from typing import Optional
from src.models import User
from src.auth.schemas import ActingUser

class UserService:
    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def to_acting_user(user: User) -> ActingUser:
        """Snapshot the fields the ticketing core needs from a user row"""
        return ActingUser(user_id=user.id, role=user.role, port_id=user.port_id)
