from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout, get_server_or_404
from parley.core.events import server_room
from parley.core.moderation import authorize_permission, enforce
from parley.database import get_db
from parley.models.server import Server
from parley.models.user import User
from parley.schemas.server import InviteResponse, MemberResponse, ServerCreate, ServerResponse
from parley.schemas.user import UserSummary
from parley.services import community_service, fanout
from parley.services.fanout import NotificationFanout

router = APIRouter(prefix="/servers", tags=["servers"])


def _server_response(server: Server, current_user: User) -> ServerResponse:
    # Server.is_owner is a method, so the owner flag is filled in here rather
    # than read off the model.
    return ServerResponse(
        id=server.id,
        name=server.name,
        description=server.description,
        icon_url=server.icon_url,
        owner_id=server.owner_id,
        invite_code=server.invite_code,
        created_at=server.created_at,
        member_count=len(server.memberships),
        is_owner=server.is_owner(current_user.id),
    )


@router.get("", response_model=list[ServerResponse])
async def list_my_servers(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Return all servers the current user belongs to."""
    return [_server_response(s, current_user) for s in community_service.list_user_servers(db, current_user)]


@router.post("", response_model=ServerResponse, status_code=201)
async def create_server(
    data: ServerCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    """Create a new server. Creator becomes owner and first member."""
    server = community_service.create_server(
        db, current_user, name=data.name, description=data.description, icon_url=data.icon_url
    )
    await notifier.subscribe(current_user.id, server_room(server.id))
    return _server_response(server, current_user)


@router.post("/join/{invite_code}", response_model=ServerResponse)
async def join_server(
    invite_code: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    server, notice = community_service.join_by_invite(db, current_user, invite_code)
    await notifier.subscribe(current_user.id, server_room(server.id))
    await notifier.emit(fanout.member_event("join", notice))
    return _server_response(server, current_user)


@router.get("/{server_id}", response_model=ServerResponse)
async def get_server(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
):
    """Get server details. Membership required."""
    enforce(authorize_permission(current_user.id, server))
    return _server_response(server, current_user)


@router.get("/{server_id}/members", response_model=list[MemberResponse])
async def list_members(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
):
    """List all members of this server. Membership required."""
    enforce(authorize_permission(current_user.id, server))
    return [
        MemberResponse(
            user=UserSummary.model_validate(m.user),
            role_ids=sorted(m.role_ids),
            joined_at=m.joined_at,
            is_owner=server.is_owner(m.user_id),
        )
        for m in sorted(server.memberships, key=lambda m: m.id)
    ]


@router.post("/{server_id}/invite/regenerate", response_model=InviteResponse)
async def regenerate_invite(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return InviteResponse(invite_code=community_service.regenerate_invite(db, server, current_user))


@router.post("/{server_id}/leave", status_code=204)
async def leave_server(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    server_id = server.id
    community_service.leave_server(db, server, current_user)
    await notifier.unsubscribe(current_user.id, server_room(server_id))
