"""
Moderation actions: kick, ban, unban, timeout, remove timeout, warn.

Every action follows the same shape:

  validate input → authorize() → mutate → audit entry → commit → notice

The notice is a plain dict describing the committed record.  Routes hand it to
fanout.member_event() after this function returns, so the personal notice and
the community broadcast are both built from the same committed values.

Records are inserted as their own rows, never by rewriting a list read
earlier, so concurrent moderation on one server cannot lose an update.
"""

import logging
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.core.errors import ConflictError, NotFoundError
from parley.core.moderation import (
    ModerationAction,
    authorize,
    authorize_permission,
    enforce,
    timeout_expiry,
    validate_timeout_duration,
)
from parley.core.permissions import Permission
from parley.models.moderation import AuditLogEntry, ServerBan, ServerTimeout, ServerWarning, normalize_reason
from parley.models.server import Server
from parley.models.user import User
from parley.services.retry import commit

logger = logging.getLogger(__name__)


class ModerationResult(NamedTuple):
    record: object
    notice: dict
    audit: AuditLogEntry


def record_audit(
    db: Session,
    server: Server,
    action: str,
    executor_id: int,
    target_id: int | None,
    reason: str | None = None,
    details: dict | None = None,
    at: datetime | None = None,
) -> AuditLogEntry:
    """Stage an audit entry in the current transaction.  Committed with the mutation it describes."""
    entry = AuditLogEntry(
        server_id=server.id,
        action=action,
        executor_id=executor_id,
        target_id=target_id,
        reason=reason,
        details=details or {},
        created_at=at or datetime.now(timezone.utc),
    )
    db.add(entry)
    logger.info(
        "AUDIT | server=%s action=%s executor=%s target=%s reason=%r",
        server.id,
        action,
        executor_id,
        target_id,
        reason,
    )
    return entry


def _notice(server: Server, target: User, actor: User, reason: str, at: datetime, **extra) -> dict:
    notice = {
        "server_id": server.id,
        "server": server.summary(),
        "user_id": target.id,
        "user": target.summary(),
        "moderator": actor.summary(),
        "reason": reason,
        "timestamp": at.isoformat(),
    }
    notice.update(extra)
    return notice


def _require_member(server: Server, user_id: int):
    membership = server.member(user_id)
    if membership is None:
        raise NotFoundError("Member not found")
    return membership


def _require_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


# ── Kick ──────────────────────────────────────────────────────────────────────


def kick(db: Session, server: Server, actor: User, target_id: int, reason: str | None = None) -> ModerationResult:
    enforce(authorize(actor.id, server, ModerationAction.KICK, target_id=target_id))
    membership = _require_member(server, target_id)
    target = membership.user
    reason = normalize_reason(reason)
    now = datetime.now(timezone.utc)

    db.delete(membership)
    audit = record_audit(db, server, ModerationAction.KICK.value, actor.id, target_id, reason, at=now)
    commit(db)
    return ModerationResult(membership, _notice(server, target, actor, reason, now), audit)


# ── Ban / unban ───────────────────────────────────────────────────────────────


def ban(db: Session, server: Server, actor: User, target_id: int, reason: str | None = None) -> ModerationResult:
    """Ban target_id.  Works on non-members too; a current membership is removed."""
    target = _require_user(db, target_id)
    enforce(authorize(actor.id, server, ModerationAction.BAN, target_id=target_id))
    reason = normalize_reason(reason)
    now = datetime.now(timezone.utc)

    record = ServerBan(server_id=server.id, user_id=target_id, banned_by_id=actor.id, reason=reason, banned_at=now)
    db.add(record)
    membership = server.member(target_id)
    if membership is not None:
        db.delete(membership)
    audit = record_audit(
        db,
        server,
        ModerationAction.BAN.value,
        actor.id,
        target_id,
        reason,
        details={"was_member": membership is not None},
        at=now,
    )
    try:
        commit(db)
    except IntegrityError as exc:
        # Lost a race with a concurrent ban of the same user.
        db.rollback()
        raise ConflictError("User is already banned") from exc
    return ModerationResult(record, _notice(server, target, actor, reason, now), audit)


def list_bans(db: Session, server: Server, actor: User) -> list[ServerBan]:
    enforce(authorize_permission(actor.id, server, Permission.BAN_MEMBERS))
    return db.query(ServerBan).filter(ServerBan.server_id == server.id).order_by(ServerBan.banned_at).all()


def unban(db: Session, server: Server, actor: User, target_id: int) -> AuditLogEntry:
    enforce(authorize(actor.id, server, ModerationAction.UNBAN, target_id=target_id))
    record = (
        db.query(ServerBan).filter(ServerBan.server_id == server.id, ServerBan.user_id == target_id).first()
    )
    if record is None:
        raise NotFoundError("Ban not found")
    db.delete(record)
    audit = record_audit(db, server, ModerationAction.UNBAN.value, actor.id, target_id)
    commit(db)
    return audit


# ── Timeout ───────────────────────────────────────────────────────────────────


def timeout(
    db: Session,
    server: Server,
    actor: User,
    target_id: int,
    duration_minutes,
    reason: str | None = None,
) -> ModerationResult:
    """Time out a member.  Any existing timeout for the user is replaced."""
    duration_minutes = validate_timeout_duration(duration_minutes)
    enforce(authorize(actor.id, server, ModerationAction.TIMEOUT, target_id=target_id))
    membership = _require_member(server, target_id)
    target = membership.user
    reason = normalize_reason(reason)
    now = datetime.now(timezone.utc)
    until = timeout_expiry(now, duration_minutes)

    db.query(ServerTimeout).filter(
        ServerTimeout.server_id == server.id, ServerTimeout.user_id == target_id
    ).delete(synchronize_session="fetch")
    record = ServerTimeout(
        server_id=server.id,
        user_id=target_id,
        timed_out_by_id=actor.id,
        reason=reason,
        duration_minutes=duration_minutes,
        timeout_at=now,
        timeout_until=until,
    )
    db.add(record)
    audit = record_audit(
        db,
        server,
        ModerationAction.TIMEOUT.value,
        actor.id,
        target_id,
        reason,
        details={"duration_minutes": duration_minutes, "timeout_until": until.isoformat()},
        at=now,
    )
    commit(db)
    notice = _notice(
        server,
        target,
        actor,
        reason,
        now,
        duration_minutes=duration_minutes,
        timeout_until=until.isoformat(),
    )
    return ModerationResult(record, notice, audit)


def remove_timeout(db: Session, server: Server, actor: User, target_id: int) -> AuditLogEntry:
    enforce(authorize(actor.id, server, ModerationAction.REMOVE_TIMEOUT, target_id=target_id))
    removed = (
        db.query(ServerTimeout)
        .filter(ServerTimeout.server_id == server.id, ServerTimeout.user_id == target_id)
        .delete(synchronize_session="fetch")
    )
    if not removed:
        raise NotFoundError("No timeout found for this member")
    audit = record_audit(db, server, ModerationAction.REMOVE_TIMEOUT.value, actor.id, target_id)
    commit(db)
    return audit


def purge_expired_timeouts(db: Session, server: Server, now: datetime | None = None) -> int:
    """Delete expired timeout rows.  Optional housekeeping; expiry is always checked at read time."""
    now = now or datetime.now(timezone.utc)
    expired = [record for record in server.timeouts if not record.is_active(now)]
    for record in expired:
        db.delete(record)
    if expired:
        commit(db)
    return len(expired)


# ── Warn ──────────────────────────────────────────────────────────────────────


def warn(db: Session, server: Server, actor: User, target_id: int, reason: str | None = None) -> ModerationResult:
    enforce(authorize(actor.id, server, ModerationAction.WARN, target_id=target_id))
    membership = _require_member(server, target_id)
    target = membership.user
    reason = normalize_reason(reason)
    now = datetime.now(timezone.utc)

    record = ServerWarning(server_id=server.id, user_id=target_id, warned_by_id=actor.id, reason=reason, warned_at=now)
    db.add(record)
    audit = record_audit(db, server, ModerationAction.WARN.value, actor.id, target_id, reason, at=now)
    commit(db)
    count = warning_count(db, server.id, target_id)
    notice = _notice(server, target, actor, reason, now, warning_id=record.id, warning_count=count)
    return ModerationResult(record, notice, audit)


def warning_count(db: Session, server_id: int, user_id: int) -> int:
    return (
        db.query(ServerWarning).filter(ServerWarning.server_id == server_id, ServerWarning.user_id == user_id).count()
    )


def list_warnings(db: Session, server: Server, actor: User, target_id: int) -> list[ServerWarning]:
    """A member may read their own warnings; moderators may read anyone's."""
    if actor.id != target_id:
        enforce(authorize_permission(actor.id, server, Permission.MANAGE_MESSAGES, Permission.KICK_MEMBERS))
    elif server.member(actor.id) is None:
        enforce(authorize_permission(actor.id, server))
    return (
        db.query(ServerWarning)
        .filter(ServerWarning.server_id == server.id, ServerWarning.user_id == target_id)
        .order_by(ServerWarning.warned_at, ServerWarning.id)
        .all()
    )


# ── Audit log ─────────────────────────────────────────────────────────────────


def list_audit_log(db: Session, server: Server, actor: User, limit: int = 50) -> list[AuditLogEntry]:
    enforce(authorize_permission(actor.id, server, Permission.ADMINISTRATOR))
    return (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.server_id == server.id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
