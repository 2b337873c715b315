from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.core.permissions import Permission
from parley.database import Base

# Association between a membership and its assigned roles.  Rows vanish with
# either side (ON DELETE CASCADE), so deleting a role strips it from every
# member in the same transaction.
member_roles = Table(
    "member_roles",
    Base.metadata,
    Column("membership_id", Integer, ForeignKey("server_memberships.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(7), default="#99aab5", nullable=False)
    # Stored as a JSON list of Permission values; read through permission_set.
    permissions = Column(JSON, default=list, nullable=False)
    # Higher position = more authority.  The default role sits at 0.
    position = Column(Integer, default=0, nullable=False)
    mentionable = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    server = relationship("Server", back_populates="roles")
    members = relationship("ServerMembership", secondary=member_roles, back_populates="roles")

    @property
    def permission_set(self) -> frozenset[Permission]:
        return frozenset(Permission(p) for p in (self.permissions or []))

    def set_permissions(self, permissions) -> None:
        self.permissions = sorted(Permission(p).value for p in permissions)
