from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parley.core.errors import AuthenticationError
from parley.database import get_db
from parley.models.server import Server
from parley.models.user import User
from parley.services import auth_service
from parley.services.community_service import get_server
from parley.services.fanout import NotificationFanout
from parley.services.realtime import NullRealtimeChannel, RealtimeChannel

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    user = auth_service.get_user_from_token(credentials.credentials, db)
    if user is None:
        raise AuthenticationError("Invalid authentication credentials")

    return user


def get_realtime_channel(request: Request) -> RealtimeChannel:
    """The channel built in the app lifespan; a null channel before startup."""
    channel = getattr(request.app.state, "realtime", None)
    return channel if channel is not None else NullRealtimeChannel()


def get_fanout(channel: RealtimeChannel = Depends(get_realtime_channel)) -> NotificationFanout:
    return NotificationFanout(channel)


def get_server_or_404(server_id: int, db: Session = Depends(get_db)) -> Server:
    return get_server(db, server_id)
