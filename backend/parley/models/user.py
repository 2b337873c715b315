from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(20), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)

    avatar_url = Column(String(500), nullable=True)
    display_name = Column(String(50), nullable=True)
    # Last status the user chose: online | away | busy | dnd | offline.
    # Live presence (with TTL) is tracked in Redis; this is the durable copy.
    status = Column(String(20), default="offline", nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    server_memberships = relationship("ServerMembership", back_populates="user", cascade="all, delete-orphan")

    def summary(self) -> dict:
        """Compact author/actor representation embedded in realtime payloads."""
        return {"id": self.id, "username": self.username, "avatar": self.avatar_url}
