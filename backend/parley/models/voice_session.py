from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base

SESSION_CHANNEL = "channel"
SESSION_DM = "dm"

# Fields a participant may toggle through update_state().
STATE_FIELDS = ("is_muted", "is_deafened", "is_video_enabled", "is_screen_sharing")


class VoiceSession(Base):
    """A voice-channel or DM-call session.

    Ended sessions are kept (is_active=False, ended_at set) for inspection.
    """

    __tablename__ = "voice_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_key = Column(String(100), unique=True, index=True, nullable=False)
    type = Column(String(10), nullable=False)

    # channel sessions
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True, index=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="SET NULL"), nullable=True)

    # dm sessions: the two participants, fixed at creation, stored low/high
    participant1_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    participant2_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_video_call = Column(Boolean, default=False, nullable=False)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    max_participants = Column(Integer, default=50, nullable=False)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    active_users = relationship(
        "VoiceParticipant",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="VoiceParticipant.joined_at",
    )

    # At most one live session per voice channel.  DM sessions have no
    # channel_id and never collide.
    __table_args__ = (
        Index(
            "uq_voice_active_channel",
            "channel_id",
            unique=True,
            postgresql_where=is_active.is_(True),
            sqlite_where=is_active.is_(True),
        ),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def participant_ids(self) -> tuple[int, ...]:
        if self.type != SESSION_DM:
            return ()
        return (self.participant1_id, self.participant2_id)

    def participant(self, user_id: int):
        for p in self.active_users:
            if p.user_id == user_id:
                return p
        return None


class VoiceParticipant(Base):
    """An active participant of a voice session."""

    __tablename__ = "voice_participants"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("voice_sessions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    joined_at = Column(DateTime(timezone=True), nullable=False)
    is_muted = Column(Boolean, default=False, nullable=False)
    is_deafened = Column(Boolean, default=False, nullable=False)
    is_video_enabled = Column(Boolean, default=False, nullable=False)
    is_screen_sharing = Column(Boolean, default=False, nullable=False)
    # WebRTC signaling addresses
    peer_id = Column(String(200), nullable=True)
    socket_id = Column(String(200), nullable=True)

    session = relationship("VoiceSession", back_populates="active_users")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("session_id", "user_id", name="unique_voice_participant"),)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "is_muted": self.is_muted,
            "is_deafened": self.is_deafened,
            "is_video_enabled": self.is_video_enabled,
            "is_screen_sharing": self.is_screen_sharing,
            "peer_id": self.peer_id,
            "socket_id": self.socket_id,
        }
