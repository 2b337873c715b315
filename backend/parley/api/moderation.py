"""
Moderation endpoints.

Each handler runs the service call inside run_with_store_retry(), then, once
the mutation is committed, publishes the personal notice and the community
broadcast built from the service's notice dict.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout, get_server_or_404
from parley.core.events import server_room
from parley.database import get_db
from parley.models.server import Server
from parley.models.user import User
from parley.schemas.moderation import (
    AuditLogResponse,
    BanResponse,
    KickResult,
    ModerationRequest,
    TimeoutRequest,
    TimeoutResponse,
    WarningList,
    WarningResponse,
    WarnResult,
)
from parley.services import fanout, moderation_service
from parley.services.fanout import NotificationFanout
from parley.services.retry import run_with_store_retry

router = APIRouter(prefix="/servers/{server_id}", tags=["moderation"])


def _reason(body: ModerationRequest | None) -> str | None:
    return body.reason if body is not None else None


@router.post("/members/{user_id}/kick", response_model=KickResult)
async def kick_member(
    user_id: int,
    body: ModerationRequest | None = None,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    result = run_with_store_retry(db, moderation_service.kick, db, server, current_user, user_id, _reason(body))
    await notifier.unsubscribe(user_id, server_room(result.notice["server_id"]))
    await notifier.emit(fanout.member_event("kick", result.notice))
    return KickResult(user_id=user_id, reason=result.notice["reason"], timestamp=result.audit.created_at)


@router.post("/members/{user_id}/ban", response_model=BanResponse)
async def ban_member(
    user_id: int,
    body: ModerationRequest | None = None,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    result = run_with_store_retry(db, moderation_service.ban, db, server, current_user, user_id, _reason(body))
    await notifier.unsubscribe(user_id, server_room(result.notice["server_id"]))
    await notifier.emit(fanout.member_event("ban", result.notice))
    return BanResponse.model_validate(result.record)


@router.get("/bans", response_model=list[BanResponse])
async def list_bans(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [BanResponse.model_validate(b) for b in moderation_service.list_bans(db, server, current_user)]


@router.delete("/bans/{user_id}", status_code=204)
async def unban_member(
    user_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    run_with_store_retry(db, moderation_service.unban, db, server, current_user, user_id)


@router.post("/members/{user_id}/timeout", response_model=TimeoutResponse)
async def timeout_member(
    user_id: int,
    body: TimeoutRequest,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    result = run_with_store_retry(
        db, moderation_service.timeout, db, server, current_user, user_id, body.duration, body.reason
    )
    await notifier.emit(fanout.member_event("timeout", result.notice))
    return TimeoutResponse.model_validate(result.record)


@router.delete("/members/{user_id}/timeout", status_code=204)
async def remove_member_timeout(
    user_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    run_with_store_retry(db, moderation_service.remove_timeout, db, server, current_user, user_id)


@router.post("/members/{user_id}/warn", response_model=WarnResult)
async def warn_member(
    user_id: int,
    body: ModerationRequest | None = None,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    result = run_with_store_retry(db, moderation_service.warn, db, server, current_user, user_id, _reason(body))
    await notifier.emit(fanout.member_event("warn", result.notice))
    return WarnResult(
        warning=WarningResponse.model_validate(result.record),
        warning_count=result.notice["warning_count"],
    )


@router.get("/members/{user_id}/warnings", response_model=WarningList)
async def list_member_warnings(
    user_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    warnings = moderation_service.list_warnings(db, server, current_user, user_id)
    return WarningList(warnings=[WarningResponse.model_validate(w) for w in warnings], count=len(warnings))


@router.get("/audit-log", response_model=list[AuditLogResponse])
async def get_audit_log(
    limit: int = Query(default=50, ge=1, le=200),
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = moderation_service.list_audit_log(db, server, current_user, limit=limit)
    return [AuditLogResponse.model_validate(e) for e in entries]
