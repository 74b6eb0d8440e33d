"""
Task use-cases and read service.

Containment is a single fact per task: ``column_id`` + ``position``. A task
move rewrites the positions of the source and destination columns, the task's
column, its status and the activity log in one transaction.

Positions of new tasks come from the column's ``task_seq`` counter, bumped by
an atomic UPDATE that also row-locks the column until commit; two concurrent
creations in the same column therefore never get the same position.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.application.access import (
    can_view_board, get_board, get_column, get_task, require, require_capability, task_context,
)
from app.application.activity import ActivityReadService, record_activity
from app.application.columns import column_tasks, lock_columns
from app.application.errors import ValidationError
from app.application.notifications import create_notification, enqueue_email
from app.application.serializers import comment_to_dict, load_assignees, task_to_dict
from app.domain.ordering import insert_at
from app.domain.permissions import Capability, Principal, can_edit_task, has_permission
from app.domain.workflow import TASK_PRIORITIES, TASK_STATUSES, apply_status
from app.infrastructure.db.models import (
    ColumnModel, TaskActivityModel, TaskAssigneeModel, TaskCommentModel, TaskModel, User,
)
from app.infrastructure.db.ordering import assign_positions
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.dates import ensure_aware, utcnow
from app.utils.validation import sanitize_input

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "description", "priority", "status", "assignee_ids", "due_date", "start_date",
    "estimated_hours", "actual_hours", "completion_percentage", "tags",
)
IMMUTABLE_FIELDS = ("column_id", "board_id", "project_id", "created_by", "position")


# ── Validation ──

def _clean_title(title: str | None) -> str:
    title = sanitize_input(title)
    if not title:
        raise ValidationError("Task title is required")
    if len(title) > 200:
        raise ValidationError("Task title cannot exceed 200 characters")
    return title


def _clean_description(description: str | None) -> str | None:
    description = sanitize_input(description)
    if len(description) > 2000:
        raise ValidationError("Description cannot exceed 2000 characters")
    return description or None


def _clean_tags(tags) -> list[str]:
    cleaned = []
    for tag in tags or []:
        tag = sanitize_input(str(tag))
        if len(tag) > 30:
            raise ValidationError("Tags cannot exceed 30 characters")
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _clean_hours(value, label: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        hours = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number") from None
    if hours < 0:
        raise ValidationError(f"{label} cannot be negative")
    return hours


def _check_choice(value: str, choices, label: str) -> None:
    if value not in choices:
        raise ValidationError(f"Invalid {label}: {value}")


def _check_dates(start: datetime | None, due: datetime | None) -> None:
    if start and due and ensure_aware(start) > ensure_aware(due):
        raise ValidationError("Start date cannot be after due date")


def _existing_user_ids(db: Session, user_ids) -> list[int]:
    ids = list(dict.fromkeys(user_ids or []))
    if not ids:
        return []
    found = {uid for (uid,) in db.query(User.id).filter(User.id.in_(ids))}
    missing = [uid for uid in ids if uid not in found]
    if missing:
        raise ValidationError(f"Users not found: {missing}")
    return ids


# ── Notifications ──

def _notify(
    db: Session,
    user_ids,
    actor: Principal,
    task: TaskModel,
    template: str,
    notification_type: str,
    title: str,
    message: str,
    extra: dict | None = None,
) -> None:
    """Email + in-app notification to each user except the actor."""
    recipients = [uid for uid in dict.fromkeys(user_ids) if uid != actor.id]
    if not recipients:
        return
    for u in db.query(User).filter(User.id.in_(recipients)).all():
        enqueue_email(db, u.email, template, {
            "name": u.fullname or u.name,
            "task_title": task.title,
            "task_id": task.id,
            "actor_name": actor.name,
            **(extra or {}),
        })
        create_notification(db, u.id, notification_type, title, message, entity_type="task", entity_id=task.id)


def _notify_status_change(db: Session, actor: Principal, task: TaskModel, old_status: str, assignee_ids) -> None:
    _notify(
        db, assignee_ids, actor, task, "task_status_changed", "project_update",
        title="Task status changed",
        message=f"{task.title}: {old_status} -> {task.status}",
        extra={"old_status": old_status, "new_status": task.status},
    )
    if task.status == "done":
        _notify(
            db, list(assignee_ids) + [task.created_by], actor, task, "task_completed", "task_completed",
            title="Task completed",
            message=f"{actor.name} completed {task.title}",
        )


def _log_status_change(db: Session, actor: Principal, task: TaskModel, old_status: str) -> None:
    if task.status == "done":
        activity_type = "completed"
    elif task.status == "archived":
        activity_type = "archived"
    elif old_status == "archived":
        activity_type = "restored"
    else:
        activity_type = "updated"
    record_activity(
        db, task.id, actor, activity_type,
        f"changed status from {old_status} to {task.status}",
        old_value={"status": old_status},
        new_value={"status": task.status},
    )


def _can_view_task(db: Session, principal: Principal, task: TaskModel) -> bool:
    return can_edit_task(principal, task_context(db, task)) or can_view_board(
        db, principal, get_board(db, task.board_id)
    )


# ── Use Cases ──

class CreateTaskUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        principal: Principal,
        column_id: int,
        title: str,
        description: str | None = None,
        board_id: int | None = None,
        project_id: int | None = None,
        priority: str = "medium",
        status: str | None = None,
        assignee_ids: list[int] | None = None,
        due_date: datetime | None = None,
        start_date: datetime | None = None,
        estimated_hours=None,
        tags: list[str] | None = None,
    ) -> int:
        require_capability(principal, Capability.CREATE_TASK, "Insufficient permissions to create tasks")
        if not column_id:
            raise ValidationError("columnId is required")
        title = _clean_title(title)
        description = _clean_description(description)
        _check_choice(priority, TASK_PRIORITIES, "priority")
        if status is not None:
            _check_choice(status, TASK_STATUSES, "status")
        _check_dates(start_date, due_date)
        hours = _clean_hours(estimated_hours, "Estimated hours")
        clean_tags = _clean_tags(tags)

        def _apply():
            column = get_column(self.db, column_id)
            board = get_board(self.db, column.board_id)
            if board_id is not None and board_id != board.id:
                raise ValidationError("Column does not belong to the given board")
            if project_id is not None and project_id != board.project_id:
                raise ValidationError("Board does not belong to the given project")
            if board.is_archived:
                raise ValidationError("Cannot add tasks to an archived board")
            require(can_view_board(self.db, principal, board), "Insufficient permissions to add tasks to this board")
            assignees = _existing_user_ids(self.db, assignee_ids)

            self.db.execute(
                update(ColumnModel)
                .where(ColumnModel.id == column.id)
                .values(task_seq=ColumnModel.task_seq + 1)
            )
            seq = self.db.query(ColumnModel.task_seq).filter(ColumnModel.id == column.id).scalar()
            if column.wip_limit and seq > column.wip_limit:
                raise ValidationError(f"Column '{column.title}' has reached its WIP limit of {column.wip_limit}")

            now = utcnow()
            task = TaskModel(
                title=title,
                description=description,
                column_id=column.id,
                board_id=board.id,
                project_id=board.project_id,
                position=seq - 1,
                priority=priority,
                created_by=principal.id,
                due_date=due_date,
                start_date=start_date,
                estimated_hours=hours,
                completion_percentage=0,
                tags=clean_tags,
            )
            apply_status(task, status or column.status or "todo", now)
            self.db.add(task)
            self.db.flush()
            for uid in assignees:
                self.db.add(TaskAssigneeModel(task_id=task.id, user_id=uid))
            self.db.flush()

            record_activity(
                self.db, task.id, principal, "created", f"created task {task.title}",
                new_value={"column_id": column.id, "status": task.status},
            )
            _notify(
                self.db, assignees, principal, task, "task_assigned", "task_assigned",
                title="New task assigned",
                message=f"{principal.name} assigned you to {task.title}",
                extra={"due_date": due_date.isoformat() if due_date else None, "priority": priority},
            )
            return task.id

        return run_in_transaction(self.db, _apply)


class UpdateTaskUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, task_id: int, **changes) -> dict:
        immutable = set(changes) & set(IMMUTABLE_FIELDS)
        if immutable:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(immutable))}")
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        def _apply():
            task = get_task(self.db, task_id)
            ctx = task_context(self.db, task)
            require(can_edit_task(principal, ctx), "Insufficient permissions to edit this task")
            now = utcnow()
            changed = []

            if "title" in changes:
                task.title = _clean_title(changes["title"])
                changed.append("title")
            if "description" in changes:
                task.description = _clean_description(changes["description"])
                changed.append("description")
            if "priority" in changes:
                _check_choice(changes["priority"], TASK_PRIORITIES, "priority")
                task.priority = changes["priority"]
                changed.append("priority")
            if "due_date" in changes:
                task.due_date = changes["due_date"]
                changed.append("due_date")
            if "start_date" in changes:
                task.start_date = changes["start_date"]
                changed.append("start_date")
            _check_dates(task.start_date, task.due_date)
            if "estimated_hours" in changes:
                task.estimated_hours = _clean_hours(changes["estimated_hours"], "Estimated hours")
                changed.append("estimated_hours")
            if "actual_hours" in changes:
                task.actual_hours = _clean_hours(changes["actual_hours"], "Actual hours")
                changed.append("actual_hours")
            if "completion_percentage" in changes:
                pct = changes["completion_percentage"]
                if pct is None or not 0 <= int(pct) <= 100:
                    raise ValidationError("Completion percentage must be between 0 and 100")
                task.completion_percentage = int(pct)
                changed.append("completion_percentage")
            if "tags" in changes:
                task.tags = _clean_tags(changes["tags"])
                changed.append("tags")
            if changed:
                record_activity(self.db, task.id, principal, "updated", f"updated {', '.join(changed)}",
                                metadata={"fields": changed})

            assignee_ids = list(ctx.assignee_ids)
            if "assignee_ids" in changes:
                new_ids = _existing_user_ids(self.db, changes["assignee_ids"])
                added = [uid for uid in new_ids if uid not in ctx.assignee_ids]
                removed = [uid for uid in ctx.assignee_ids if uid not in new_ids]
                if removed:
                    self.db.query(TaskAssigneeModel).filter(
                        TaskAssigneeModel.task_id == task.id,
                        TaskAssigneeModel.user_id.in_(removed),
                    ).delete(synchronize_session=False)
                for uid in added:
                    self.db.add(TaskAssigneeModel(task_id=task.id, user_id=uid))
                self.db.flush()
                if added or removed:
                    record_activity(
                        self.db, task.id, principal, "assigned", "changed assignees",
                        old_value={"assignee_ids": sorted(ctx.assignee_ids)},
                        new_value={"assignee_ids": sorted(new_ids)},
                    )
                _notify(
                    self.db, added, principal, task, "task_assigned", "task_assigned",
                    title="New task assigned",
                    message=f"{principal.name} assigned you to {task.title}",
                    extra={"priority": task.priority},
                )
                assignee_ids = new_ids

            if "status" in changes and changes["status"] != task.status:
                _check_choice(changes["status"], TASK_STATUSES, "status")
                old_status = task.status
                apply_status(task, changes["status"], now)
                _log_status_change(self.db, principal, task, old_status)
                _notify_status_change(self.db, principal, task, old_status, assignee_ids)

            self.db.flush()
            return task_to_dict(task, sorted(assignee_ids))

        return run_in_transaction(self.db, _apply)


class DeleteTaskUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, task_id: int) -> None:
        def _apply():
            task = get_task(self.db, task_id)
            require(
                has_permission(principal.role, Capability.DELETE_TASK)
                and (task.created_by == principal.id or principal.role in ("admin", "hr")),
                "Insufficient permissions to delete this task",
            )
            column = lock_columns(self.db, [task.column_id])[task.column_id]
            for model in (TaskCommentModel, TaskActivityModel, TaskAssigneeModel):
                self.db.query(model).filter(model.task_id == task.id).delete(synchronize_session=False)
            self.db.delete(task)
            self.db.flush()

            remaining = column_tasks(self.db, column.id)
            assign_positions(self.db, remaining)
            column.task_seq = len(remaining)
            self.db.flush()
            logger.info("Task %s deleted by user %s", task_id, principal.id)

        run_in_transaction(self.db, _apply)


class MoveTaskUseCase:
    """
    Move a task to ``destination_index`` of a column on the same board
    (or reorder it within its column).

    The whole move commits or nothing does: both columns' positions, the
    task's column and status, and the "moved" activity.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        principal: Principal,
        task_id: int,
        source_column_id: int,
        destination_column_id: int,
        destination_index: int,
    ) -> dict:
        require_capability(
            principal, Capability.MOVE_TASKS_BETWEEN_COLUMNS, "Insufficient permissions to move tasks",
        )
        if destination_index is None or destination_index < 0:
            raise ValidationError("destinationIndex must be a non-negative integer")

        def _apply():
            task = get_task(self.db, task_id)
            ctx = task_context(self.db, task)
            require(can_edit_task(principal, ctx), "Insufficient permissions to move this task")
            source = get_column(self.db, source_column_id, "Source column not found")
            destination = get_column(self.db, destination_column_id, "Destination column not found")
            if source.board_id != destination.board_id:
                raise ValidationError("Cannot move tasks between different boards")
            if get_board(self.db, source.board_id).is_archived:
                raise ValidationError("Cannot move tasks on an archived board")

            lock_columns(self.db, {source.id, destination.id})
            # re-read under the column locks, a concurrent move may have committed
            self.db.refresh(task, with_for_update=True)
            if task.column_id != source.id:
                raise ValidationError("Task is not in the source column")
            old_value = {
                "column_id": source.id,
                "column_title": source.title,
                "position": task.position,
                "status": task.status,
            }

            if source.id == destination.id:
                ordered = insert_at(column_tasks(self.db, source.id), task, destination_index)
                assign_positions(self.db, ordered)
            else:
                remaining = [t for t in column_tasks(self.db, source.id) if t.id != task.id]
                target = column_tasks(self.db, destination.id)
                if destination.wip_limit and len(target) >= destination.wip_limit:
                    raise ValidationError(
                        f"Column '{destination.title}' has reached its WIP limit of {destination.wip_limit}"
                    )
                ordered = insert_at(target, task, destination_index)
                task.column_id = destination.id
                assign_positions(self.db, remaining, ordered)
                source.task_seq = len(remaining)
                destination.task_seq = len(ordered)

            old_status = task.status
            if destination.status and destination.status != task.status:
                apply_status(task, destination.status, utcnow())

            record_activity(
                self.db, task.id, principal, "moved",
                f"moved task from {source.title} to {destination.title}",
                old_value=old_value,
                new_value={
                    "column_id": destination.id,
                    "column_title": destination.title,
                    "position": task.position,
                    "status": task.status,
                },
            )
            if task.status != old_status:
                _notify_status_change(self.db, principal, task, old_status, ctx.assignee_ids)
            self.db.flush()
            return task_to_dict(task, sorted(ctx.assignee_ids))

        return run_in_transaction(self.db, _apply)


class AddCommentUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, task_id: int, content: str, mentions: list[int] | None = None) -> dict:
        require_capability(principal, Capability.ADD_TASK_COMMENTS, "Insufficient permissions to comment")
        content = sanitize_input(content)
        if not content:
            raise ValidationError("Comment content is required")
        if len(content) > 1000:
            raise ValidationError("Comment cannot exceed 1000 characters")

        def _apply():
            task = get_task(self.db, task_id)
            require(_can_view_task(self.db, principal, task), "Insufficient permissions to view this task")
            mention_ids = _existing_user_ids(self.db, mentions)
            comment = TaskCommentModel(
                task_id=task.id,
                author_id=principal.id,
                content=content,
                mention_ids=mention_ids,
            )
            self.db.add(comment)
            self.db.flush()
            record_activity(
                self.db, task.id, principal, "commented", "added a comment",
                metadata={"comment_id": comment.id},
            )
            _notify(
                self.db, mention_ids, principal, task, "comment_mention", "comment_mention",
                title="You were mentioned",
                message=f"{principal.name} mentioned you on {task.title}",
                extra={"author_name": principal.name, "comment": content},
            )
            author = self.db.get(User, principal.id)
            return comment_to_dict(comment, author)

        return run_in_transaction(self.db, _apply)


# ── Read Service ──

class TaskReadService:
    def __init__(self, db: Session):
        self.db = db

    def list_tasks(
        self,
        principal: Principal,
        assignee: list[int] | None = None,
        priority: list[str] | None = None,
        status: list[str] | None = None,
        board_id: int | None = None,
        project_id: int | None = None,
        search: str | None = None,
    ) -> list[dict]:
        q = self.db.query(TaskModel)
        if not has_permission(principal.role, Capability.EDIT_ALL_TASKS):
            mine = select(TaskAssigneeModel.task_id).where(TaskAssigneeModel.user_id == principal.id)
            q = q.filter(or_(TaskModel.created_by == principal.id, TaskModel.id.in_(mine)))
        if assignee:
            assigned = select(TaskAssigneeModel.task_id).where(TaskAssigneeModel.user_id.in_(assignee))
            q = q.filter(TaskModel.id.in_(assigned))
        if priority:
            q = q.filter(TaskModel.priority.in_(priority))
        if status:
            q = q.filter(TaskModel.status.in_(status))
        if board_id:
            q = q.filter(TaskModel.board_id == board_id)
        if project_id:
            q = q.filter(TaskModel.project_id == project_id)
        if search:
            pattern = f"%{search.strip()}%"
            q = q.filter(or_(TaskModel.title.ilike(pattern), TaskModel.description.ilike(pattern)))
        tasks = q.order_by(TaskModel.column_id, TaskModel.position).all()
        assignees = load_assignees(self.db, [t.id for t in tasks])
        return [task_to_dict(t, assignees.get(t.id, [])) for t in tasks]

    def get_task(self, principal: Principal, task_id: int) -> dict:
        task = get_task(self.db, task_id)
        require(_can_view_task(self.db, principal, task), "Insufficient permissions to view this task")
        data = task_to_dict(task, load_assignees(self.db, [task.id]).get(task.id, []))
        data["comment_count"] = self.db.query(TaskCommentModel).filter(TaskCommentModel.task_id == task.id).count()
        return data

    def list_comments(self, principal: Principal, task_id: int) -> list[dict]:
        task = get_task(self.db, task_id)
        require(_can_view_task(self.db, principal, task), "Insufficient permissions to view this task")
        comments = (
            self.db.query(TaskCommentModel)
            .filter(TaskCommentModel.task_id == task.id)
            .order_by(TaskCommentModel.created_at, TaskCommentModel.id)
            .all()
        )
        authors = {
            u.id: u for u in self.db.query(User).filter(User.id.in_({c.author_id for c in comments})).all()
        } if comments else {}
        return [comment_to_dict(c, authors.get(c.author_id)) for c in comments]

    def list_activities(self, principal: Principal, task_id: int, page: int = 1, limit: int = 50) -> dict:
        task = get_task(self.db, task_id)
        require(_can_view_task(self.db, principal, task), "Insufficient permissions to view this task")
        return ActivityReadService(self.db).list_for_task(task.id, page=page, limit=limit)
