from sqlalchemy import Column, String, Boolean, Integer, Enum
import enum
from app.models.base import BaseModel


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    SCHOOL = "school"
    ATTENDANT = "attendant"
    STUDENT = "student"


class User(BaseModel):
    __tablename__ = "users"

    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    role = Column(Enum(UserRole), default=UserRole.STUDENT, nullable=False)
    school_id = Column(Integer, nullable=True, index=True)

    def __repr__(self):
        return f"<User(username='{self.username}', email='{self.email}', role='{self.role}')>"
