import secrets

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base


def generate_invite_code() -> str:
    return secrets.token_urlsafe(9)


class Server(Base):
    """A community.  Owns its roles, members and moderation records."""

    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    icon_url = Column(String(500), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    invite_code = Column(String(32), unique=True, index=True, nullable=False, default=generate_invite_code)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    memberships = relationship("ServerMembership", back_populates="server", cascade="all, delete-orphan")
    roles = relationship(
        "Role",
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="Role.position.desc()",
    )
    channels = relationship("Channel", back_populates="server", cascade="all, delete-orphan")
    bans = relationship("ServerBan", back_populates="server", cascade="all, delete-orphan")
    timeouts = relationship("ServerTimeout", back_populates="server", cascade="all, delete-orphan")
    warnings = relationship("ServerWarning", back_populates="server", cascade="all, delete-orphan")

    def is_owner(self, user_id: int) -> bool:
        return self.owner_id == user_id

    def member(self, user_id: int):
        """Return the membership for user_id, or None."""
        for membership in self.memberships:
            if membership.user_id == user_id:
                return membership
        return None

    @property
    def default_role(self):
        for role in self.roles:
            if role.is_default:
                return role
        return None

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "icon": self.icon_url}
