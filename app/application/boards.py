"""
Boards use-cases and read service.

Column order of a board is not stored on the board: it is the board's columns
sorted by ``position``.
"""
import logging

from sqlalchemy.orm import Session

from app.application.access import (
    board_context, can_manage_board, can_view_board, get_board, get_project, is_board_manager,
    require, require_capability,
)
from app.application.errors import ValidationError
from app.application.notifications import create_notification, enqueue_email
from app.application.serializers import (
    board_to_dict, column_to_dict, load_assignees, load_board_members, task_to_dict,
)
from app.domain.permissions import Capability, Principal, has_permission
from app.domain.workflow import DEFAULT_COLUMNS, DEFAULT_STATUS_MAPPING
from app.infrastructure.db.models import (
    BoardMemberModel, BoardModel, ColumnModel, TaskActivityModel, TaskAssigneeModel,
    TaskCommentModel, TaskModel, User,
)
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.validation import sanitize_input

logger = logging.getLogger(__name__)

BOARD_VISIBILITIES = ("private", "team", "public")
UPDATABLE_FIELDS = ("title", "description", "visibility", "background", "is_archived", "member_ids", "admin_ids")


def _clean_title(title: str | None) -> str:
    title = sanitize_input(title)
    if not title:
        raise ValidationError("Board title is required")
    if len(title) > 100:
        raise ValidationError("Board title cannot exceed 100 characters")
    return title


def _check_visibility(visibility: str) -> None:
    if visibility not in BOARD_VISIBILITIES:
        raise ValidationError(f"Invalid visibility: {visibility}")


def _sync_members(db: Session, board: BoardModel, member_ids, admin_ids) -> list[int]:
    """
    Replace the board's member/admin sets; the creator is always both and
    admins are always members. Returns newly added member IDs.
    """
    admins = set(admin_ids) | {board.created_by}
    members = set(member_ids) | admins
    found = {uid for (uid,) in db.query(User.id).filter(User.id.in_(members))}
    if members - found:
        raise ValidationError(f"Users not found: {sorted(members - found)}")

    current = {r.user_id: r for r in db.query(BoardMemberModel).filter(BoardMemberModel.board_id == board.id)}
    for uid, row in current.items():
        if uid not in members:
            db.delete(row)
        else:
            row.is_admin = uid in admins
    added = []
    for uid in sorted(members - set(current)):
        db.add(BoardMemberModel(board_id=board.id, user_id=uid, is_admin=uid in admins))
        added.append(uid)
    db.flush()
    return added


def _invite(db: Session, board: BoardModel, user_ids, inviter: Principal) -> None:
    if not user_ids:
        return
    users = db.query(User).filter(User.id.in_(user_ids), User.id != inviter.id).all()
    for u in users:
        enqueue_email(db, u.email, "board_invitation", {
            "name": u.fullname or u.name,
            "board_title": board.title,
            "inviter_name": inviter.name,
            "board_id": board.id,
        })
        create_notification(
            db, u.id, "board_invitation",
            title="Board invitation",
            message=f"{inviter.name} added you to board {board.title}",
            entity_type="board", entity_id=board.id,
        )


def purge_boards(db: Session, board_ids: list[int]) -> None:
    """Delete boards with their columns, tasks, comments and activities (no commit)."""
    if not board_ids:
        return
    task_ids = [tid for (tid,) in db.query(TaskModel.id).filter(TaskModel.board_id.in_(board_ids))]
    if task_ids:
        for model in (TaskCommentModel, TaskActivityModel, TaskAssigneeModel):
            db.query(model).filter(model.task_id.in_(task_ids)).delete(synchronize_session=False)
        db.query(TaskModel).filter(TaskModel.id.in_(task_ids)).delete(synchronize_session=False)
    db.query(ColumnModel).filter(ColumnModel.board_id.in_(board_ids)).delete(synchronize_session=False)
    db.query(BoardMemberModel).filter(BoardMemberModel.board_id.in_(board_ids)).delete(synchronize_session=False)
    db.query(BoardModel).filter(BoardModel.id.in_(board_ids)).delete(synchronize_session=False)
    db.flush()


# ── Use Cases ──

class CreateBoardUseCase:
    """Create a board with the default To Do / In Progress / Review / Done columns."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        principal: Principal,
        project_id: int,
        title: str,
        description: str | None = None,
        visibility: str = "team",
        background: str | None = None,
        member_ids: list[int] | None = None,
    ) -> int:
        require_capability(principal, Capability.CREATE_BOARD, "Insufficient permissions to create boards")
        title = _clean_title(title)
        _check_visibility(visibility)

        def _apply():
            get_project(self.db, project_id)
            board = BoardModel(
                title=title,
                description=sanitize_input(description) or None,
                project_id=project_id,
                visibility=visibility,
                background=background,
                is_archived=False,
                created_by=principal.id,
                status_map_version=DEFAULT_STATUS_MAPPING.version,
            )
            self.db.add(board)
            self.db.flush()
            added = _sync_members(self.db, board, member_ids or [], [])

            for position, (col_title, color, status) in enumerate(DEFAULT_COLUMNS):
                self.db.add(ColumnModel(
                    board_id=board.id,
                    title=col_title,
                    position=position,
                    color=color,
                    status=status,
                    task_seq=0,
                ))
            self.db.flush()
            _invite(self.db, board, added, principal)
            logger.info("Board %s created in project %s by user %s", board.id, project_id, principal.id)
            return board.id

        return run_in_transaction(self.db, _apply)


class UpdateBoardUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, board_id: int, **changes) -> None:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        def _apply():
            board = get_board(self.db, board_id)
            require(can_manage_board(self.db, principal, board), "Insufficient permissions to edit this board")

            if "title" in changes:
                board.title = _clean_title(changes["title"])
            if "description" in changes:
                board.description = sanitize_input(changes["description"]) or None
            if "visibility" in changes:
                _check_visibility(changes["visibility"])
                board.visibility = changes["visibility"]
            if "background" in changes:
                board.background = changes["background"]
            if "is_archived" in changes:
                require(
                    has_permission(principal.role, Capability.ARCHIVE_BOARD)
                    or is_board_manager(self.db, principal, board),
                    "Insufficient permissions to archive this board",
                )
                board.is_archived = bool(changes["is_archived"])
            if "member_ids" in changes or "admin_ids" in changes:
                ctx = board_context(self.db, board)
                added = _sync_members(
                    self.db, board,
                    changes.get("member_ids", ctx.member_ids) or [],
                    changes.get("admin_ids", ctx.admin_ids) or [],
                )
                _invite(self.db, board, added, principal)
            self.db.flush()

        run_in_transaction(self.db, _apply)


class DeleteBoardUseCase:
    """Archive a board, or delete it with everything on it when ``permanent``."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, board_id: int, permanent: bool = False) -> None:
        def _apply():
            board = get_board(self.db, board_id)
            require(
                has_permission(principal.role, Capability.DELETE_BOARD)
                and (principal.role == "admin" or is_board_manager(self.db, principal, board)),
                "Insufficient permissions to delete this board",
            )
            if permanent:
                purge_boards(self.db, [board.id])
                logger.info("Board %s permanently deleted by user %s", board_id, principal.id)
            else:
                board.is_archived = True
                self.db.flush()

        run_in_transaction(self.db, _apply)


# ── Read Service ──

def build_board_tree(db: Session, boards: list[BoardModel]) -> list[dict]:
    """Boards with nested columns and tasks, both ordered by position."""
    if not boards:
        return []
    board_ids = [b.id for b in boards]
    columns = (
        db.query(ColumnModel)
        .filter(ColumnModel.board_id.in_(board_ids))
        .order_by(ColumnModel.board_id, ColumnModel.position)
        .all()
    )
    tasks = (
        db.query(TaskModel)
        .filter(TaskModel.board_id.in_(board_ids))
        .order_by(TaskModel.column_id, TaskModel.position)
        .all()
    )
    assignees = load_assignees(db, [t.id for t in tasks])
    members = load_board_members(db, board_ids)

    tasks_by_column: dict[int, list[TaskModel]] = {}
    for t in tasks:
        tasks_by_column.setdefault(t.column_id, []).append(t)
    columns_by_board: dict[int, list[dict]] = {}
    for c in columns:
        col_tasks = tasks_by_column.get(c.id, [])
        item = column_to_dict(c, [t.id for t in col_tasks])
        item["tasks"] = [task_to_dict(t, assignees.get(t.id, [])) for t in col_tasks]
        columns_by_board.setdefault(c.board_id, []).append(item)

    result = []
    for b in boards:
        cols = columns_by_board.get(b.id, [])
        item = board_to_dict(b, [c["id"] for c in cols], members.get(b.id))
        item["columns"] = cols
        result.append(item)
    return result


class BoardReadService:
    def __init__(self, db: Session):
        self.db = db

    def list_boards(self, principal: Principal, project_id: int | None = None, archived: bool = False) -> list[dict]:
        q = self.db.query(BoardModel).filter(BoardModel.is_archived == archived)
        if project_id:
            q = q.filter(BoardModel.project_id == project_id)
        boards = [
            b for b in q.order_by(BoardModel.updated_at.desc(), BoardModel.id.desc()).all()
            if can_view_board(self.db, principal, b)
        ]
        members = load_board_members(self.db, [b.id for b in boards])
        column_orders: dict[int, list[int]] = {}
        if boards:
            rows = (
                self.db.query(ColumnModel.board_id, ColumnModel.id)
                .filter(ColumnModel.board_id.in_([b.id for b in boards]))
                .order_by(ColumnModel.board_id, ColumnModel.position)
            )
            for board_id, column_id in rows:
                column_orders.setdefault(board_id, []).append(column_id)
        return [board_to_dict(b, column_orders.get(b.id, []), members.get(b.id)) for b in boards]

    def get_board(self, principal: Principal, board_id: int) -> dict:
        board = get_board(self.db, board_id)
        require(can_view_board(self.db, principal, board), "Insufficient permissions to view this board")
        return build_board_tree(self.db, [board])[0]

    def boards_for_project(self, principal: Principal, project_id: int) -> list[dict]:
        boards = (
            self.db.query(BoardModel)
            .filter(BoardModel.project_id == project_id, BoardModel.is_archived == False)  # noqa: E712
            .order_by(BoardModel.created_at, BoardModel.id)
            .all()
        )
        return build_board_tree(self.db, [b for b in boards if can_view_board(self.db, principal, b)])
