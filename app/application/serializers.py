"""
ORM row -> JSON-ready dict conversion, plus batch loaders for the
association tables (members, admins, assignees).
"""
from collections import defaultdict

from sqlalchemy.orm import Session

from app.infrastructure.db.models import (
    User, ProjectModel, ProjectMemberModel, BoardModel, BoardMemberModel,
    ColumnModel, TaskModel, TaskAssigneeModel, TaskCommentModel, TaskActivityModel,
)
from app.utils.dates import isoformat


def _decimal(value):
    return float(value) if value is not None else None


# ── Batch loaders ──

def load_project_members(db: Session, project_ids) -> dict[int, list[int]]:
    result = defaultdict(list)
    if project_ids:
        rows = db.query(ProjectMemberModel).filter(ProjectMemberModel.project_id.in_(list(project_ids))).all()
        for r in rows:
            result[r.project_id].append(r.user_id)
    return {pid: sorted(ids) for pid, ids in result.items()}


def load_board_members(db: Session, board_ids) -> dict[int, tuple[list[int], list[int]]]:
    """board_id -> (member_ids, admin_ids)"""
    members = defaultdict(list)
    admins = defaultdict(list)
    if board_ids:
        rows = db.query(BoardMemberModel).filter(BoardMemberModel.board_id.in_(list(board_ids))).all()
        for r in rows:
            members[r.board_id].append(r.user_id)
            if r.is_admin:
                admins[r.board_id].append(r.user_id)
    return {bid: (sorted(members[bid]), sorted(admins[bid])) for bid in set(members) | set(admins)}


def load_assignees(db: Session, task_ids) -> dict[int, list[int]]:
    result = defaultdict(list)
    if task_ids:
        rows = db.query(TaskAssigneeModel).filter(TaskAssigneeModel.task_id.in_(list(task_ids))).all()
        for r in rows:
            result[r.task_id].append(r.user_id)
    return {tid: sorted(ids) for tid, ids in result.items()}


# ── Serializers ──

def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "fullname": user.fullname,
        "number": user.number,
        "role": user.role,
        "email_verified": user.email_verified,
        "account_status": user.account_status,
        "id_assigned": user.id_assigned,
        "id_assigned_at": isoformat(user.id_assigned_at),
        "employee_id": user.employee_id,
        "client_id": user.client_id,
        "status_updated_by": user.status_updated_by,
        "status_updated_at": isoformat(user.status_updated_at),
        "last_seen_at": isoformat(user.last_seen_at),
        "created_at": isoformat(user.created_at),
    }


def project_to_dict(p: ProjectModel, member_ids: list[int] | None = None) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "key": p.key,
        "status": p.status,
        "priority": p.priority,
        "start_date": isoformat(p.start_date),
        "end_date": isoformat(p.end_date),
        "budget": _decimal(p.budget),
        "currency": p.currency,
        "progress": p.progress,
        "owner_id": p.owner_id,
        "client_id": p.client_id,
        "member_ids": member_ids or [],
        "tags": list(p.tags or []),
        "is_public": p.is_public,
        "created_at": isoformat(p.created_at),
        "updated_at": isoformat(p.updated_at),
    }


def board_to_dict(b: BoardModel, column_order: list[int], members=None) -> dict:
    member_ids, admin_ids = members or ([], [])
    return {
        "id": b.id,
        "title": b.title,
        "description": b.description,
        "project_id": b.project_id,
        "visibility": b.visibility,
        "background": b.background,
        "is_archived": b.is_archived,
        "created_by": b.created_by,
        "member_ids": member_ids,
        "admin_ids": admin_ids,
        "column_order": column_order,
        "status_map_version": b.status_map_version,
        "created_at": isoformat(b.created_at),
        "updated_at": isoformat(b.updated_at),
    }


def column_to_dict(c: ColumnModel, task_ids: list[int]) -> dict:
    return {
        "id": c.id,
        "board_id": c.board_id,
        "title": c.title,
        "position": c.position,
        "color": c.color,
        "wip_limit": c.wip_limit,
        "is_collapsed": c.is_collapsed,
        "status": c.status,
        "task_ids": task_ids,
    }


def task_to_dict(t: TaskModel, assignee_ids: list[int] | None = None) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "column_id": t.column_id,
        "board_id": t.board_id,
        "project_id": t.project_id,
        "position": t.position,
        "priority": t.priority,
        "status": t.status,
        "assignee_ids": assignee_ids or [],
        "created_by": t.created_by,
        "due_date": isoformat(t.due_date),
        "start_date": isoformat(t.start_date),
        "estimated_hours": _decimal(t.estimated_hours),
        "actual_hours": _decimal(t.actual_hours),
        "completion_percentage": t.completion_percentage,
        "tags": list(t.tags or []),
        "archived_at": isoformat(t.archived_at),
        "created_at": isoformat(t.created_at),
        "updated_at": isoformat(t.updated_at),
    }


def comment_to_dict(c: TaskCommentModel, author: User | None = None) -> dict:
    return {
        "id": c.id,
        "task_id": c.task_id,
        "author_id": c.author_id,
        "author_name": (author.fullname or author.name) if author else None,
        "content": c.content,
        "mention_ids": list(c.mention_ids or []),
        "is_edited": c.is_edited,
        "created_at": isoformat(c.created_at),
    }


def activity_to_dict(a: TaskActivityModel) -> dict:
    return {
        "id": a.id,
        "task_id": a.task_id,
        "type": a.activity_type,
        "actor_id": a.actor_id,
        "actor_name": a.actor_name,
        "description": a.description,
        "old_value": a.old_value,
        "new_value": a.new_value,
        "metadata": a.metadata_json,
        "created_at": isoformat(a.created_at),
    }
