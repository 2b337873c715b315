from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base

CHANNEL_TEXT = "text"
CHANNEL_VOICE = "voice"
VALID_CHANNEL_TYPES = (CHANNEL_TEXT, CHANNEL_VOICE)


class Channel(Base):
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    # Names must be unique within a server, enforced by unique_channel_per_server.
    name = Column(String(50), nullable=False)
    topic = Column(String(500), nullable=True)
    type = Column(String(10), nullable=False, default=CHANNEL_TEXT)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    server = relationship("Server", back_populates="channels")
    creator = relationship("User")
    messages = relationship("Message", back_populates="channel", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("server_id", "name", name="unique_channel_per_server"),)
