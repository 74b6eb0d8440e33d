"""
Projects use-cases and read service.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.application.access import (
    get_project, project_context, require, require_capability,
)
from app.application.boards import BoardReadService, purge_boards
from app.application.errors import ConflictError, ValidationError
from app.application.serializers import load_project_members, project_to_dict, user_to_dict
from app.domain.permissions import (
    Capability, Principal, can_edit_project, can_view_project, has_permission,
)
from app.infrastructure.db.models import BoardModel, ProjectMemberModel, ProjectModel, User
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.dates import ensure_aware
from app.utils.validation import is_valid_project_key, sanitize_input

logger = logging.getLogger(__name__)

# ── Constants ──

PROJECT_STATUSES = ("planning", "active", "on-hold", "completed", "cancelled")
PROJECT_PRIORITIES = ("low", "medium", "high", "critical")
UPDATABLE_FIELDS = (
    "name", "description", "status", "priority", "start_date", "end_date",
    "budget", "currency", "progress", "client_id", "tags", "is_public",
)


# ── Validation ──

def _clean_name(name: str | None) -> str:
    name = sanitize_input(name)
    if not name:
        raise ValidationError("Project name is required")
    if len(name) > 100:
        raise ValidationError("Project name cannot exceed 100 characters")
    return name


def _clean_description(description: str | None) -> str | None:
    description = sanitize_input(description)
    if len(description) > 1000:
        raise ValidationError("Description cannot exceed 1000 characters")
    return description or None


def _clean_budget(budget) -> Decimal | None:
    if budget is None or budget == "":
        return None
    try:
        value = Decimal(str(budget))
    except InvalidOperation:
        raise ValidationError("Budget must be a number") from None
    if value < 0:
        raise ValidationError("Budget cannot be negative")
    return value


def _clean_tags(tags) -> list[str]:
    cleaned = []
    for tag in tags or []:
        tag = sanitize_input(str(tag))
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _check_dates(start: datetime | None, end: datetime | None) -> None:
    if start and end and ensure_aware(end) < ensure_aware(start):
        raise ValidationError("End date must be after start date")


def _check_users_exist(db: Session, user_ids) -> None:
    ids = set(user_ids)
    if not ids:
        return
    found = {uid for (uid,) in db.query(User.id).filter(User.id.in_(ids))}
    missing = ids - found
    if missing:
        raise ValidationError(f"Users not found: {sorted(missing)}")


# ── Use Cases ──

class CreateProjectUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        principal: Principal,
        name: str,
        key: str,
        description: str | None = None,
        status: str = "planning",
        priority: str = "medium",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        budget=None,
        currency: str = "USD",
        client_id: int | None = None,
        member_ids: list[int] | None = None,
        tags: list[str] | None = None,
        is_public: bool = False,
    ) -> int:
        require_capability(principal, Capability.CREATE_PROJECT, "Insufficient permissions to create projects")
        name = _clean_name(name)
        description = _clean_description(description)
        key = (key or "").strip().upper()
        if not is_valid_project_key(key):
            raise ValidationError("Project key must be 2-10 uppercase letters")
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        if priority not in PROJECT_PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")
        _check_dates(start_date, end_date)
        budget_value = _clean_budget(budget)
        members = set(member_ids or [])
        members.add(principal.id)

        def _apply():
            if self.db.query(ProjectModel.id).filter(ProjectModel.key == key).first():
                raise ConflictError("Project key already exists")
            _check_users_exist(self.db, members | ({client_id} if client_id else set()))

            project = ProjectModel(
                name=name,
                description=description,
                key=key,
                status=status,
                priority=priority,
                start_date=start_date,
                end_date=end_date,
                budget=budget_value,
                currency=(currency or "USD").upper()[:3],
                progress=0,
                owner_id=principal.id,
                client_id=client_id,
                tags=_clean_tags(tags),
                is_public=is_public,
            )
            self.db.add(project)
            self.db.flush()
            for uid in sorted(members):
                self.db.add(ProjectMemberModel(project_id=project.id, user_id=uid))
            self.db.flush()
            logger.info("Project %s (%s) created by user %s", project.id, key, principal.id)
            return project.id

        return run_in_transaction(self.db, _apply)


class UpdateProjectUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, project_id: int, **changes) -> None:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        def _apply():
            project = get_project(self.db, project_id)
            require(
                can_edit_project(principal, project_context(self.db, project)),
                "Insufficient permissions to edit this project",
            )

            if "name" in changes:
                project.name = _clean_name(changes["name"])
            if "description" in changes:
                project.description = _clean_description(changes["description"])
            if "status" in changes:
                if changes["status"] not in PROJECT_STATUSES:
                    raise ValidationError(f"Invalid status: {changes['status']}")
                project.status = changes["status"]
            if "priority" in changes:
                if changes["priority"] not in PROJECT_PRIORITIES:
                    raise ValidationError(f"Invalid priority: {changes['priority']}")
                project.priority = changes["priority"]
            if "start_date" in changes:
                project.start_date = changes["start_date"]
            if "end_date" in changes:
                project.end_date = changes["end_date"]
            _check_dates(project.start_date, project.end_date)
            if "budget" in changes:
                project.budget = _clean_budget(changes["budget"])
            if "currency" in changes:
                project.currency = (changes["currency"] or "USD").upper()[:3]
            if "progress" in changes:
                progress = changes["progress"]
                if progress is None or not 0 <= int(progress) <= 100:
                    raise ValidationError("Progress must be between 0 and 100")
                project.progress = int(progress)
            if "client_id" in changes:
                if changes["client_id"]:
                    _check_users_exist(self.db, [changes["client_id"]])
                project.client_id = changes["client_id"]
            if "tags" in changes:
                project.tags = _clean_tags(changes["tags"])
            if "is_public" in changes:
                project.is_public = bool(changes["is_public"])
            self.db.flush()

        run_in_transaction(self.db, _apply)


class DeleteProjectUseCase:
    """Hard delete: the project with all of its boards, columns and tasks."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, project_id: int) -> None:
        def _apply():
            project = get_project(self.db, project_id)
            require(
                has_permission(principal.role, Capability.DELETE_PROJECT)
                and (principal.role == "admin" or project.owner_id == principal.id),
                "Insufficient permissions to delete this project",
            )
            board_ids = [bid for (bid,) in self.db.query(BoardModel.id).filter(BoardModel.project_id == project.id)]
            purge_boards(self.db, board_ids)
            self.db.query(ProjectMemberModel).filter(ProjectMemberModel.project_id == project.id).delete(
                synchronize_session=False
            )
            self.db.delete(project)
            self.db.flush()
            logger.info("Project %s deleted by user %s", project_id, principal.id)

        run_in_transaction(self.db, _apply)


class AddProjectMembersUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, project_id: int, user_ids: list[int]) -> list[int]:
        if not user_ids:
            raise ValidationError("user_ids is required")

        def _apply():
            project = get_project(self.db, project_id)
            ctx = project_context(self.db, project)
            require(
                has_permission(principal.role, Capability.MANAGE_PROJECT_MEMBERS) or ctx.owner_id == principal.id,
                "Insufficient permissions to manage project members",
            )
            _check_users_exist(self.db, user_ids)
            existing = {
                uid for (uid,) in self.db.query(ProjectMemberModel.user_id)
                .filter(ProjectMemberModel.project_id == project.id)
            }
            added = []
            for uid in dict.fromkeys(user_ids):
                if uid not in existing:
                    self.db.add(ProjectMemberModel(project_id=project.id, user_id=uid))
                    added.append(uid)
            self.db.flush()
            return added

        return run_in_transaction(self.db, _apply)


class RemoveProjectMemberUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, project_id: int, user_id: int) -> None:
        def _apply():
            project = get_project(self.db, project_id)
            if user_id == project.owner_id:
                raise ValidationError("The project owner cannot be removed")
            is_manager = (
                has_permission(principal.role, Capability.MANAGE_PROJECT_MEMBERS)
                or project.owner_id == principal.id
            )
            require(is_manager or user_id == principal.id, "Insufficient permissions to manage project members")
            removed = self.db.query(ProjectMemberModel).filter(
                ProjectMemberModel.project_id == project.id,
                ProjectMemberModel.user_id == user_id,
            ).delete(synchronize_session=False)
            if not removed:
                raise ValidationError("User is not a member of this project")

        run_in_transaction(self.db, _apply)


# ── Read Service ──

class ProjectReadService:
    def __init__(self, db: Session):
        self.db = db

    def visible_project_ids_query(self, principal: Principal):
        """Projects the user may see: all for view-all roles, otherwise owned, joined or as client."""
        stmt = select(ProjectModel.id)
        if has_permission(principal.role, Capability.VIEW_ALL_PROJECTS):
            return stmt
        member_of = select(ProjectMemberModel.project_id).where(ProjectMemberModel.user_id == principal.id)
        return stmt.where(or_(
            ProjectModel.owner_id == principal.id,
            ProjectModel.client_id == principal.id,
            ProjectModel.id.in_(member_of),
        ))

    def list_projects(
        self,
        principal: Principal,
        status: list[str] | None = None,
        priority: list[str] | None = None,
        owner_id: int | None = None,
        client_id: int | None = None,
        search: str | None = None,
    ) -> list[dict]:
        q = self.db.query(ProjectModel).filter(ProjectModel.id.in_(self.visible_project_ids_query(principal)))
        if status:
            q = q.filter(ProjectModel.status.in_(status))
        if priority:
            q = q.filter(ProjectModel.priority.in_(priority))
        if owner_id:
            q = q.filter(ProjectModel.owner_id == owner_id)
        if client_id:
            q = q.filter(ProjectModel.client_id == client_id)
        if search:
            pattern = f"%{search.strip()}%"
            q = q.filter(or_(ProjectModel.name.ilike(pattern), ProjectModel.description.ilike(pattern)))
        projects = q.order_by(ProjectModel.updated_at.desc(), ProjectModel.id.desc()).all()
        members = load_project_members(self.db, [p.id for p in projects])
        return [project_to_dict(p, members.get(p.id, [])) for p in projects]

    def get_project(self, principal: Principal, project_id: int) -> dict:
        project = get_project(self.db, project_id)
        ctx = project_context(self.db, project)
        require(
            can_view_project(principal, ctx) or project.is_public,
            "Insufficient permissions to view this project",
        )
        data = project_to_dict(project, load_project_members(self.db, [project.id]).get(project.id, []))
        data["boards"] = BoardReadService(self.db).boards_for_project(principal, project.id)
        return data

    def list_members(self, principal: Principal, project_id: int) -> list[dict]:
        project = get_project(self.db, project_id)
        ctx = project_context(self.db, project)
        require(can_view_project(principal, ctx), "Insufficient permissions to view this project")
        member_ids = load_project_members(self.db, [project.id]).get(project.id, [])
        users = self.db.query(User).filter(User.id.in_(member_ids)).order_by(User.id).all() if member_ids else []
        result = []
        for u in users:
            item = user_to_dict(u)
            item["is_owner"] = u.id == project.owner_id
            result.append(item)
        return result
