from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_server_or_404
from parley.database import get_db
from parley.models.role import Role
from parley.models.server import Server
from parley.models.user import User
from parley.schemas.role import MemberRolesUpdate, RoleCreate, RoleResponse, RoleUpdate
from parley.services import role_service
from parley.services.retry import run_with_store_retry

router = APIRouter(prefix="/servers/{server_id}", tags=["roles"])


def _role_response(role: Role, member_count: int | None = None) -> RoleResponse:
    response = RoleResponse.model_validate(role)
    response.member_count = member_count
    return response


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Roles sorted by position, highest first."""
    return [_role_response(role, count) for role, count in role_service.list_roles(db, server, current_user)]


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    data: RoleCreate,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    role = run_with_store_retry(
        db,
        role_service.create_role,
        db,
        server,
        current_user,
        name=data.name,
        permissions=data.permissions,
        color=data.color,
        mentionable=data.mentionable,
    )
    return _role_response(role, 0)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: int,
    data: RoleUpdate,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    def _update():
        role = role_service.get_role(db, server, role_id)
        return role_service.update_role(db, server, current_user, role, data.model_dump(exclude_unset=True))

    return _role_response(run_with_store_retry(db, _update))


@router.delete("/roles/{role_id}", status_code=204)
async def delete_role(
    role_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a role and strip it from every member. The default role cannot be deleted."""

    def _delete():
        role = role_service.get_role(db, server, role_id)
        role_service.delete_role(db, server, current_user, role)

    run_with_store_retry(db, _delete)


@router.get("/members/{user_id}/roles", response_model=list[RoleResponse])
async def get_member_roles(
    user_id: int,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [_role_response(role) for role in role_service.get_member_roles(db, server, current_user, user_id)]


@router.put("/members/{user_id}/roles", response_model=list[RoleResponse])
async def update_member_roles(
    user_id: int,
    data: MemberRolesUpdate,
    server: Server = Depends(get_server_or_404),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """add / remove / set the member's roles. set always keeps the default role."""
    roles = run_with_store_retry(
        db,
        role_service.update_member_roles,
        db,
        server,
        current_user,
        user_id,
        data.action,
        data.role_ids,
    )
    return [_role_response(role) for role in roles]
