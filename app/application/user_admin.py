"""
Admin user management: approval with ID assignment, block/unblock, edits.
"""
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.application.errors import ConflictError, NotFoundError, ValidationError
from app.application.notifications import enqueue_email
from app.application.serializers import user_to_dict
from app.auth import normalize_email
from app.infrastructure.db.models import BoardModel, ProjectModel, TaskCommentModel, TaskModel, User
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.dates import utcnow
from app.utils.validation import is_valid_client_id, is_valid_email, is_valid_employee_id

logger = logging.getLogger(__name__)

ADMIN_STATUS_ACTIONS = ("approved", "declined", "blocked")
EDITABLE_ROLES = ("hr", "employee", "client")
EDITABLE_FIELDS = ("fullname", "email", "number", "role")


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _check_id_for_role(db: Session, user: User, employee_id: str | None, client_id: str | None) -> tuple[str, str]:
    """Validate the ID matching the user's role; returns (field, value)."""
    if user.role in ("hr", "employee"):
        if not employee_id:
            raise ValidationError("Employee ID is required for HR and Employee accounts")
        if not is_valid_employee_id(employee_id):
            raise ValidationError("Employee ID must look like EMPXX123456")
        field, value, column = "employee_id", employee_id, User.employee_id
    elif user.role == "client":
        if not client_id:
            raise ValidationError("Client ID is required for Client accounts")
        if not is_valid_client_id(client_id):
            raise ValidationError("Client ID must look like CLIXX123456")
        field, value, column = "client_id", client_id, User.client_id
    else:
        raise ValidationError("IDs are only assigned to HR, Employee and Client accounts")

    taken = db.query(User.id).filter(column == value, User.id != user.id).first()
    if taken:
        raise ConflictError(f"{value} is already assigned to another user")
    return field, value


def _id_email_context(user: User, field: str, value: str) -> dict:
    return {
        "name": user.fullname or user.name,
        "role": user.role,
        "id_label": "Employee ID" if field == "employee_id" else "Client ID",
        "assigned_id": value,
    }


class UpdateUserStatusUseCase:
    """Approve (assigning an ID), decline or block a non-admin account."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        admin_id: int,
        user_id: int,
        status: str,
        employee_id: str | None = None,
        client_id: str | None = None,
    ) -> User:
        if status not in ADMIN_STATUS_ACTIONS:
            raise ValidationError("Invalid status")
        employee_id = (employee_id or "").strip().upper() or None
        client_id = (client_id or "").strip().upper() or None

        def _apply():
            user = _get_user(self.db, user_id)
            if user.role == "admin":
                raise ValidationError("Admin accounts cannot be modified")

            now = utcnow()
            if status == "approved":
                field, value = _check_id_for_role(self.db, user, employee_id, client_id)
                setattr(user, field, value)
                user.id_assigned = True
                user.id_assigned_at = now

            user.account_status = status
            user.status_updated_by = admin_id
            user.status_updated_at = now
            self.db.flush()

            if status == "approved":
                enqueue_email(self.db, user.email, "id_assigned", _id_email_context(user, field, value))
            else:
                enqueue_email(self.db, user.email, "status_update", {
                    "name": user.fullname or user.name,
                    "status": status,
                })
            logger.info("Admin %s set user %s status to %s", admin_id, user.id, status)
            return user

        return run_in_transaction(self.db, _apply)


class UnblockUserUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, admin_id: int, user_id: int) -> User:
        def _apply():
            user = _get_user(self.db, user_id)
            if user.account_status != "blocked":
                raise ValidationError("User is not blocked")
            user.account_status = "approved"
            user.status_updated_by = admin_id
            user.status_updated_at = utcnow()
            enqueue_email(self.db, user.email, "status_update", {
                "name": user.fullname or user.name,
                "status": "approved",
            })
            return user

        return run_in_transaction(self.db, _apply)


class DeleteUserUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, admin_id: int, user_id: int) -> None:
        def _apply():
            user = _get_user(self.db, user_id)
            if user.id == admin_id:
                raise ValidationError("You cannot delete your own account")
            if user.role == "admin":
                raise ValidationError("Admin accounts cannot be deleted")
            owns_data = (
                self.db.query(ProjectModel.id).filter(
                    or_(ProjectModel.owner_id == user.id, ProjectModel.client_id == user.id)
                ).first()
                or self.db.query(BoardModel.id).filter(BoardModel.created_by == user.id).first()
                or self.db.query(TaskModel.id).filter(TaskModel.created_by == user.id).first()
                or self.db.query(TaskCommentModel.id).filter(TaskCommentModel.author_id == user.id).first()
            )
            if owns_data:
                raise ConflictError(
                    "User is referenced by projects, boards, tasks or comments; reassign them before deleting"
                )
            self.db.delete(user)
            logger.info("Admin %s deleted user %s", admin_id, user_id)

        run_in_transaction(self.db, _apply)


class UpdateUserUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user_id: int, updates: dict) -> User:
        changes = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None}
        if not changes:
            raise ValidationError("No valid fields to update")

        def _apply():
            user = _get_user(self.db, user_id)
            if "email" in changes:
                email = normalize_email(changes["email"])
                if not is_valid_email(email):
                    raise ValidationError("Invalid email address")
                taken = self.db.query(User.id).filter(User.email == email, User.id != user.id).first()
                if taken:
                    raise ConflictError("Email already in use")
                user.email = email
            if "role" in changes:
                if user.role == "admin" or changes["role"] not in EDITABLE_ROLES:
                    raise ValidationError("Invalid role")
                user.role = changes["role"]
            if "fullname" in changes:
                user.fullname = changes["fullname"].strip() or None
            if "number" in changes:
                user.number = changes["number"].strip() or None
            return user

        return run_in_transaction(self.db, _apply)


class AssignIdUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, admin_id: int, user_id: int, employee_id: str | None = None, client_id: str | None = None) -> User:
        employee_id = (employee_id or "").strip().upper() or None
        client_id = (client_id or "").strip().upper() or None
        if bool(employee_id) == bool(client_id):
            raise ValidationError("Provide exactly one of employeeId or clientId")

        def _apply():
            user = _get_user(self.db, user_id)
            if user.id_assigned:
                raise ValidationError("User already has an ID assigned")
            if employee_id and user.role not in ("hr", "employee"):
                raise ValidationError("Employee IDs can only be assigned to HR and Employee accounts")
            if client_id and user.role != "client":
                raise ValidationError("Client IDs can only be assigned to Client accounts")
            field, value = _check_id_for_role(self.db, user, employee_id, client_id)

            now = utcnow()
            setattr(user, field, value)
            user.id_assigned = True
            user.id_assigned_at = now
            user.status_updated_by = admin_id
            user.status_updated_at = now
            self.db.flush()
            enqueue_email(self.db, user.email, "id_assigned", _id_email_context(user, field, value))
            return user

        return run_in_transaction(self.db, _apply)


class UserAdminReadService:
    def __init__(self, db: Session):
        self.db = db

    def list_users(
        self,
        role: str | None = None,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        q = self.db.query(User).filter(User.role != "admin")
        if role:
            q = q.filter(User.role == role)
        if status:
            q = q.filter(User.account_status == status)
        if search:
            pattern = f"%{search.strip()}%"
            q = q.filter(or_(
                User.name.ilike(pattern),
                User.fullname.ilike(pattern),
                User.email.ilike(pattern),
                User.employee_id.ilike(pattern),
                User.client_id.ilike(pattern),
            ))
        total = q.count()
        users = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "users": [user_to_dict(u) for u in users],
            "pagination": {
                "current": page,
                "total": (total + limit - 1) // limit,
                "count": len(users),
                "total_count": total,
            },
        }

    def list_unassigned(self) -> list[dict]:
        users = (
            self.db.query(User)
            .filter(User.role != "admin", User.id_assigned == False)  # noqa: E712
            .order_by(User.created_at.desc(), User.id.desc())
            .all()
        )
        return [user_to_dict(u) for u in users]
