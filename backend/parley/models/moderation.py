"""
Moderation records owned by a server.

Each record is its own row, so recording a ban/timeout/warning is a single
INSERT rather than a read-modify-write of a list on the server row; two
simultaneous warnings are both retained.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base

NO_REASON = "No reason provided"


def normalize_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        return NO_REASON
    return reason.strip()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ServerBan(Base):
    __tablename__ = "server_bans"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    banned_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(String(500), nullable=False, default=NO_REASON)
    banned_at = Column(DateTime(timezone=True), nullable=False)

    server = relationship("Server", back_populates="bans")
    user = relationship("User", foreign_keys=[user_id])
    banned_by = relationship("User", foreign_keys=[banned_by_id])

    # At most one standing ban per user per server.
    __table_args__ = (UniqueConstraint("server_id", "user_id", name="unique_server_ban"),)


class ServerTimeout(Base):
    __tablename__ = "server_timeouts"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    timed_out_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(String(500), nullable=False, default=NO_REASON)
    duration_minutes = Column(Integer, nullable=False)
    timeout_at = Column(DateTime(timezone=True), nullable=False)
    timeout_until = Column(DateTime(timezone=True), nullable=False)

    server = relationship("Server", back_populates="timeouts")
    user = relationship("User", foreign_keys=[user_id])
    timed_out_by = relationship("User", foreign_keys=[timed_out_by_id])

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now < _as_utc(self.timeout_until)


class ServerWarning(Base):
    __tablename__ = "server_warnings"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    warned_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(String(500), nullable=False, default=NO_REASON)
    warned_at = Column(DateTime(timezone=True), nullable=False)

    server = relationship("Server", back_populates="warnings")
    user = relationship("User", foreign_keys=[user_id])
    warned_by = relationship("User", foreign_keys=[warned_by_id])


class AuditLogEntry(Base):
    """Durable record of every applied moderation / role mutation."""

    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(40), nullable=False)
    executor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # User id for member actions, role id for ROLE_* actions.
    target_id = Column(Integer, nullable=True)
    reason = Column(String(500), nullable=True)
    details = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
