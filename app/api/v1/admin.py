"""
Admin user-management API.

Access: only users with role "admin".
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin
from app.api.envelope import RequestModel, success
from app.application.serializers import user_to_dict
from app.application.user_admin import (
    AssignIdUseCase, DeleteUserUseCase, UnblockUserUseCase, UpdateUserStatusUseCase,
    UpdateUserUseCase, UserAdminReadService,
)
from app.infrastructure.db.models import User
from app.readmodels.admin_stats import get_overview_stats, get_storage_stats
from app.utils.dates import utcnow

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ── Request models ──

class UserStatusRequest(RequestModel):
    user_id: int
    status: str
    employee_id: str | None = None
    client_id: str | None = None


class UserIdRequest(RequestModel):
    user_id: int


class AssignIdRequest(RequestModel):
    user_id: int
    employee_id: str | None = None
    client_id: str | None = None


class UpdateUserRequest(RequestModel):
    fullname: str | None = None
    email: str | None = None
    number: str | None = None
    role: str | None = None


# ── Routes ──

@router.get("/users")
def list_users(
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    data = UserAdminReadService(db).list_users(role=role, status=status, search=search, page=page, limit=limit)
    return success("Users retrieved", data)


@router.get("/unassigned-users")
def unassigned_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return success("Users without an assigned ID", UserAdminReadService(db).list_unassigned())


@router.get("/storage")
def storage(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return success("Storage statistics", get_storage_stats(db))


@router.get("/overview")
def overview(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return success("Overview statistics", get_overview_stats(db, utcnow()))


@router.post("/users/status")
def update_status(req: UserStatusRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = UpdateUserStatusUseCase(db).execute(
        admin_id=admin.id,
        user_id=req.user_id,
        status=req.status,
        employee_id=req.employee_id,
        client_id=req.client_id,
    )
    return success(f"User {req.status} successfully", user_to_dict(user))


@router.post("/users/unblock")
def unblock_user(req: UserIdRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = UnblockUserUseCase(db).execute(admin_id=admin.id, user_id=req.user_id)
    return success("User unblocked successfully", user_to_dict(user))


@router.post("/assign-id")
def assign_id(req: AssignIdRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    user = AssignIdUseCase(db).execute(
        admin_id=admin.id,
        user_id=req.user_id,
        employee_id=req.employee_id,
        client_id=req.client_id,
    )
    return success("ID assigned successfully", user_to_dict(user))


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    req: UpdateUserRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UpdateUserUseCase(db).execute(user_id=user_id, updates=req.model_dump(exclude_unset=True))
    return success("User updated successfully", user_to_dict(user))


@router.delete("/users/{user_id}")
def delete_user(user_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    DeleteUserUseCase(db).execute(admin_id=admin.id, user_id=user_id)
    return success("User deleted successfully")
