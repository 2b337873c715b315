from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout
from parley.core import events
from parley.database import get_db
from parley.models.dm_conversation import DMConversation
from parley.models.user import User
from parley.schemas.dm import (
    ConversationCreate,
    ConversationResponse,
    DMMessageCreate,
    DMMessageResponse,
    DMMessageUpdate,
    MarkReadRequest,
    MarkReadResponse,
)
from parley.schemas.user import UserSummary
from parley.services import dm_service, fanout
from parley.services.community_service import get_user
from parley.services.fanout import NotificationFanout
from parley.services.retry import run_with_store_retry

router = APIRouter(prefix="/dms", tags=["dms"])


def _conversation_response(db: Session, conversation: DMConversation, current_user: User) -> ConversationResponse:
    last = conversation.last_message
    if last is not None and last.is_deleted:
        last = None
    return ConversationResponse(
        id=conversation.id,
        other_user=UserSummary.model_validate(conversation.other_user(current_user.id)),
        last_message=DMMessageResponse.model_validate(last) if last is not None else None,
        last_activity=conversation.last_activity,
        unread_count=dm_service.unread_count(db, conversation, current_user),
    )


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ConversationResponse]:
    """Conversations ordered by most recent activity."""
    return [_conversation_response(db, c, current_user) for c in dm_service.list_conversations(db, current_user)]


@router.post("", response_model=ConversationResponse)
async def open_conversation(
    data: ConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ConversationResponse:
    """Get or create the conversation with another user. Idempotent."""
    other = get_user(db, data.user_id)
    conversation = run_with_store_retry(db, dm_service.resolve_conversation, db, current_user.id, other.id)
    return _conversation_response(db, conversation, current_user)


@router.get("/{conversation_id}/messages", response_model=list[DMMessageResponse])
async def get_messages(
    conversation_id: int,
    limit: int = Query(default=50, ge=1, le=100),
    before: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[DMMessageResponse]:
    conversation = dm_service.get_conversation(db, conversation_id, current_user)
    messages = dm_service.list_messages(db, conversation, limit=limit, before_id=before)
    return [DMMessageResponse.model_validate(m) for m in messages]


@router.post("/{conversation_id}/messages", response_model=DMMessageResponse, status_code=201)
async def send_message(
    conversation_id: int,
    data: DMMessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> DMMessageResponse:
    conversation = dm_service.get_conversation(db, conversation_id, current_user)
    message = dm_service.append_message(db, conversation, current_user, data.content)
    await notifier.emit(fanout.direct_message(message, current_user, conversation.other_user_id(current_user.id)))
    return DMMessageResponse.model_validate(message)


@router.patch("/messages/{message_id}", response_model=DMMessageResponse)
async def edit_message(
    message_id: int,
    data: DMMessageUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> DMMessageResponse:
    message = dm_service.edit_message(db, message_id, current_user, data.content)
    await notifier.emit(fanout.dm_changed(events.DM_EDITED, message, message.conversation))
    return DMMessageResponse.model_validate(message)


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> None:
    message = dm_service.delete_message(db, message_id, current_user)
    await notifier.emit(fanout.dm_changed(events.DM_DELETED, message, message.conversation))


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: int,
    data: MarkReadRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> MarkReadResponse:
    """Mark the other participant's messages read; the author receives dm-read."""
    conversation = dm_service.get_conversation(db, conversation_id, current_user)
    message_ids, read_at = dm_service.mark_read(
        db, conversation, current_user, data.message_ids if data is not None else None
    )
    await notifier.emit(fanout.dm_read(conversation, current_user.id, message_ids, read_at))
    return MarkReadResponse(message_ids=message_ids, read_at=read_at)
