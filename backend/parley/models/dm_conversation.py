from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from parley.database import Base


def ordered_pair(a: int, b: int) -> tuple[int, int]:
    """Canonical (low, high) ordering for an unordered user pair."""
    return (a, b) if a < b else (b, a)


class DMConversation(Base):
    """A 1-on-1 conversation between two users."""

    __tablename__ = "dm_conversations"

    id = Column(Integer, primary_key=True, index=True)
    # Always store the lower user_id as user1_id to guarantee uniqueness
    user1_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    user2_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    last_message_id = Column(
        Integer,
        ForeignKey("dm_messages.id", use_alter=True, name="fk_dm_conversation_last_message"),
        nullable=True,
    )
    last_activity = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user1 = relationship("User", foreign_keys=[user1_id])
    user2 = relationship("User", foreign_keys=[user2_id])
    messages = relationship(
        "DMMessage",
        back_populates="conversation",
        foreign_keys="DMMessage.conversation_id",
        cascade="all, delete-orphan",
    )
    last_message = relationship("DMMessage", foreign_keys=[last_message_id], post_update=True)

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="unique_dm_pair"),
        CheckConstraint("user1_id < user2_id", name="dm_pair_ordered"),
    )

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user1_id, self.user2_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_user_id(self, current_user_id: int) -> int:
        return self.user2_id if self.user1_id == current_user_id else self.user1_id

    def other_user(self, current_user_id: int):
        return self.user2 if self.user1_id == current_user_id else self.user1


class DMMessage(Base):
    """A message inside a DM conversation.  Never hard-deleted."""

    __tablename__ = "dm_messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(
        Integer, ForeignKey("dm_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(String(2000), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    conversation = relationship("DMConversation", back_populates="messages", foreign_keys=[conversation_id])
    author = relationship("User")
