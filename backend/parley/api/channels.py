from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout, get_server_or_404
from parley.database import get_db
from parley.models.server import Server
from parley.models.user import User
from parley.schemas.channel import ChannelCreate, ChannelResponse
from parley.schemas.message import MessageCreate, MessageList, MessageResponse
from parley.services import channel_service, fanout
from parley.services.fanout import NotificationFanout

router = APIRouter(prefix="/servers/{server_id}/channels", tags=["channels"])


@router.get("", response_model=list[ChannelResponse])
async def list_channels(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ChannelResponse]:
    """Return all channels for this server. Membership required."""
    return [ChannelResponse.model_validate(c) for c in channel_service.list_channels(db, server, current_user)]


@router.post("", response_model=ChannelResponse, status_code=201)
async def create_channel(
    channel_in: ChannelCreate,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ChannelResponse:
    """Create a text or voice channel. Requires MANAGE_CHANNELS."""
    channel = channel_service.create_channel(
        db, server, current_user, name=channel_in.name, type=channel_in.type, topic=channel_in.topic
    )
    return ChannelResponse.model_validate(channel)


@router.get("/{channel_id}", response_model=ChannelResponse)
async def get_channel(
    channel_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ChannelResponse:
    channel_service.list_channels(db, server, current_user)
    return ChannelResponse.model_validate(channel_service.get_channel(db, server, channel_id))


@router.delete("/{channel_id}", status_code=204)
async def delete_channel(
    channel_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    channel = channel_service.get_channel(db, server, channel_id)
    channel_service.delete_channel(db, server, current_user, channel)


@router.get("/{channel_id}/messages", response_model=MessageList)
async def get_channel_messages(
    channel_id: int,
    limit: int = Query(default=50, ge=1, le=100),
    before: int | None = Query(default=None, description="Only messages with an id below this one"),
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessageList:
    channel = channel_service.get_channel(db, server, channel_id)
    messages = channel_service.list_messages(db, server, channel, current_user, limit=limit, before_id=before)
    return MessageList(messages=[MessageResponse.model_validate(m) for m in messages], limit=limit)


@router.post("/{channel_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    channel_id: int,
    message_in: MessageCreate,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> MessageResponse:
    channel = channel_service.get_channel(db, server, channel_id)
    message = channel_service.post_message(db, server, channel, current_user, message_in.content)
    # Subscribers of channel:<id> get new-message, payload carries server_id for routing.
    await notifier.emit(fanout.channel_message(message, server.id))
    return MessageResponse.model_validate(message)
