"""
Entity loaders (404 on miss) and permission-context builders shared by the
project-management use-cases.
"""
from sqlalchemy.orm import Session

from app.application.errors import NotFoundError, PermissionDeniedError
from app.domain.permissions import (
    BoardContext, Capability, Principal, ProjectContext, TaskContext,
    can_user_perform_action, can_view_project, has_permission,
)
from app.infrastructure.db.models import (
    BoardMemberModel, BoardModel, ColumnModel, ProjectMemberModel, ProjectModel,
    TaskAssigneeModel, TaskModel,
)


def require(allowed: bool, message: str = "Insufficient permissions") -> None:
    if not allowed:
        raise PermissionDeniedError(message)


def require_capability(principal: Principal, capability: Capability, message: str | None = None) -> None:
    require(has_permission(principal.role, capability), message or "Insufficient permissions")


# ── Loaders ──

def get_project(db: Session, project_id: int) -> ProjectModel:
    project = db.get(ProjectModel, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


def get_board(db: Session, board_id: int) -> BoardModel:
    board = db.get(BoardModel, board_id)
    if board is None:
        raise NotFoundError("Board not found")
    return board


def get_column(db: Session, column_id: int, message: str = "Column not found") -> ColumnModel:
    column = db.get(ColumnModel, column_id)
    if column is None:
        raise NotFoundError(message)
    return column


def get_task(db: Session, task_id: int) -> TaskModel:
    task = db.get(TaskModel, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


# ── Contexts ──

def project_context(db: Session, project: ProjectModel) -> ProjectContext:
    member_ids = {
        uid for (uid,) in db.query(ProjectMemberModel.user_id).filter(ProjectMemberModel.project_id == project.id)
    }
    if project.client_id:
        member_ids.add(project.client_id)
    return ProjectContext(owner_id=project.owner_id, member_ids=frozenset(member_ids))


def board_context(db: Session, board: BoardModel) -> BoardContext:
    rows = db.query(BoardMemberModel).filter(BoardMemberModel.board_id == board.id).all()
    return BoardContext(
        creator_id=board.created_by,
        member_ids=frozenset(r.user_id for r in rows),
        admin_ids=frozenset(r.user_id for r in rows if r.is_admin),
    )


def task_context(db: Session, task: TaskModel) -> TaskContext:
    assignees = db.query(TaskAssigneeModel.user_id).filter(TaskAssigneeModel.task_id == task.id)
    return TaskContext(creator_id=task.created_by, assignee_ids=frozenset(uid for (uid,) in assignees))


# ── Composite checks ──

def can_view_board(db: Session, principal: Principal, board: BoardModel) -> bool:
    """
    view-all sees everything; board members, admins and the creator see the
    board; public boards are visible to anyone signed in; team boards to the
    project's owner, members and client.
    """
    if has_permission(principal.role, Capability.VIEW_ALL_PROJECTS):
        return True
    if can_user_perform_action(principal, Capability.VIEW_ASSIGNED_PROJECTS, board_context(db, board)):
        return True
    if board.visibility == "public":
        return True
    if board.visibility == "team":
        project = get_project(db, board.project_id)
        return can_view_project(principal, project_context(db, project))
    return False


def is_board_manager(db: Session, principal: Principal, board: BoardModel) -> bool:
    """Board admin or creator."""
    ctx = board_context(db, board)
    return principal.id == ctx.creator_id or principal.id in ctx.admin_ids


def can_manage_board(db: Session, principal: Principal, board: BoardModel) -> bool:
    return is_board_manager(db, principal, board) or has_permission(
        principal.role, Capability.EDIT_BOARD_SETTINGS
    )
