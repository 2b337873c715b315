from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base
from parley.models.role import member_roles


class ServerMembership(Base):
    """A user's membership of a server, carrying their assigned roles."""

    __tablename__ = "server_memberships"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    # Touched on every role-list change so the UPDATE carries the version check.
    roles_updated_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    server = relationship("Server", back_populates="memberships")
    user = relationship("User", back_populates="server_memberships")
    roles = relationship("Role", secondary=member_roles, back_populates="members")

    __table_args__ = (UniqueConstraint("server_id", "user_id", name="unique_server_member"),)
    __mapper_args__ = {"version_id_col": version}

    @property
    def role_ids(self) -> set[int]:
        return {role.id for role in self.roles}
