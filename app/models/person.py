"""Person model for the people a user buys gifts for."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from app.database import Base


class Person(Base):
    """Person model; owns events, which cascade on deletion."""

    __tablename__ = "people"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="people")
    events = relationship("Event", back_populates="person", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Person(id={self.id}, name={self.name})>"

    def validate(self) -> None:
        """Validate person data."""
        if not self.id:
            raise ValueError("Person ID is required")
        if not self.user_id:
            raise ValueError("User ID is required")
        if not self.name:
            raise ValueError("Name is required")
