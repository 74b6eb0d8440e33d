"""
Column use-cases: create, update, reorder, delete.

Every change that touches more than one position is written through
``assign_positions`` inside a single transaction, so a board's column order
(and a column's task order) is either fully applied or not at all.
"""
import logging

from sqlalchemy.orm import Session

from app.application.access import (
    can_manage_board, can_view_board, get_board, get_column, is_board_manager, require,
)
from app.application.errors import ValidationError
from app.application.serializers import column_to_dict, load_assignees, task_to_dict
from app.domain.ordering import clamp_index, is_permutation
from app.domain.permissions import Capability, Principal, has_permission
from app.domain.workflow import TASK_STATUSES, apply_status, get_status_mapping
from app.infrastructure.db.models import ColumnModel, TaskModel
from app.infrastructure.db.ordering import assign_positions
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.dates import utcnow
from app.utils.validation import is_valid_hex_color, sanitize_input

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_COLOR = "#6B7280"


# ── Helpers ──

def lock_columns(db: Session, column_ids) -> dict[int, ColumnModel]:
    """Load and row-lock columns in id order (fixed order avoids lock cycles)."""
    rows = (
        db.query(ColumnModel)
        .filter(ColumnModel.id.in_(list(column_ids)))
        .order_by(ColumnModel.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {c.id: c for c in rows}


def board_columns(db: Session, board_id: int) -> list[ColumnModel]:
    return (
        db.query(ColumnModel)
        .filter(ColumnModel.board_id == board_id)
        .order_by(ColumnModel.position)
        .all()
    )


def column_tasks(db: Session, column_id: int) -> list[TaskModel]:
    return (
        db.query(TaskModel)
        .filter(TaskModel.column_id == column_id)
        .order_by(TaskModel.position)
        .all()
    )


def _clean_title(title: str | None) -> str:
    title = sanitize_input(title)
    if not title:
        raise ValidationError("Column title is required")
    if len(title) > 50:
        raise ValidationError("Column title cannot exceed 50 characters")
    return title


def _check_color(color: str) -> None:
    if not is_valid_hex_color(color):
        raise ValidationError("Color must be a hex value like #1A2B3C")


def _check_wip_limit(wip_limit: int | None) -> None:
    if wip_limit is not None and not 1 <= wip_limit <= 100:
        raise ValidationError("WIP limit must be between 1 and 100")


def _check_status(status: str | None) -> None:
    if status is not None and status not in TASK_STATUSES:
        raise ValidationError(f"Invalid status: {status}")


def _can_edit_columns(db: Session, principal: Principal, board, capability: Capability) -> bool:
    return is_board_manager(db, principal, board) or has_permission(principal.role, capability)


# ── Use Cases ──

class CreateColumnUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        principal: Principal,
        board_id: int,
        title: str,
        color: str | None = None,
        wip_limit: int | None = None,
        position: int | None = None,
        status: str | None = None,
    ) -> int:
        title = _clean_title(title)
        color = color or DEFAULT_COLUMN_COLOR
        _check_color(color)
        _check_wip_limit(wip_limit)
        _check_status(status)

        def _apply():
            board = get_board(self.db, board_id)
            require(
                _can_edit_columns(self.db, principal, board, Capability.CREATE_COLUMN),
                "Only board admins can create columns",
            )
            existing = board_columns(self.db, board.id)
            column = ColumnModel(
                board_id=board.id,
                title=title,
                position=max((c.position for c in existing), default=-1) + 1,
                color=color,
                wip_limit=wip_limit,
                status=status or get_status_mapping(board.status_map_version).status_for_title(title),
                task_seq=0,
            )
            self.db.add(column)
            self.db.flush()

            if position is not None:
                ordered = list(existing)
                ordered.insert(clamp_index(position, len(existing)), column)
                assign_positions(self.db, ordered)
            return column.id

        return run_in_transaction(self.db, _apply)


class UpdateColumnUseCase:
    UPDATABLE_FIELDS = ("title", "color", "wip_limit", "is_collapsed", "status")

    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, column_id: int, **changes) -> None:
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        def _apply():
            column = get_column(self.db, column_id)
            board = get_board(self.db, column.board_id)
            require(can_manage_board(self.db, principal, board), "Only board admins can edit columns")

            if "title" in changes:
                column.title = _clean_title(changes["title"])
            if "color" in changes:
                _check_color(changes["color"])
                column.color = changes["color"]
            if "wip_limit" in changes:
                require(
                    _can_edit_columns(self.db, principal, board, Capability.SET_WIP_LIMITS),
                    "Insufficient permissions to set WIP limits",
                )
                _check_wip_limit(changes["wip_limit"])
                column.wip_limit = changes["wip_limit"]
            if "is_collapsed" in changes:
                column.is_collapsed = bool(changes["is_collapsed"])
            if "status" in changes:
                _check_status(changes["status"])
                column.status = changes["status"]
            self.db.flush()

        run_in_transaction(self.db, _apply)


class ReorderColumnsUseCase:
    """Rewrite the column order of a board from a full, ordered list of its column IDs."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, board_id: int, column_ids: list[int]) -> list[int]:
        if not isinstance(column_ids, list) or not column_ids:
            raise ValidationError("columnOrder must be a non-empty list")

        def _apply():
            board = get_board(self.db, board_id)
            require(
                _can_edit_columns(self.db, principal, board, Capability.REORDER_COLUMNS),
                "Only board admins can reorder columns",
            )
            columns = {c.id: c for c in board_columns(self.db, board.id)}
            lock_columns(self.db, columns)
            if not is_permutation(column_ids, list(columns)):
                raise ValidationError("columnOrder must list every column of the board exactly once")

            assign_positions(self.db, [columns[cid] for cid in column_ids])
            return list(column_ids)

        return run_in_transaction(self.db, _apply)


class DeleteColumnUseCase:
    """
    Delete a column. A non-empty column needs ``move_tasks_to``, a column of
    the same board that receives its tasks (appended in their current order).
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, principal: Principal, column_id: int, move_tasks_to: int | None = None) -> None:
        def _apply():
            column = get_column(self.db, column_id)
            board = get_board(self.db, column.board_id)
            require(
                _can_edit_columns(self.db, principal, board, Capability.DELETE_COLUMN),
                "Only board admins can delete columns",
            )
            tasks = column_tasks(self.db, column.id)
            if tasks:
                if not move_tasks_to:
                    raise ValidationError("Column contains tasks; specify moveTasksTo")
                if move_tasks_to == column.id:
                    raise ValidationError("Tasks cannot be moved to the column being deleted")
                target = get_column(self.db, move_tasks_to, "Target column not found")
                if target.board_id != column.board_id:
                    raise ValidationError("Target column must belong to the same board")
                lock_columns(self.db, [column.id, target.id])
                merged = column_tasks(self.db, target.id) + tasks

                now = utcnow()
                for t in tasks:
                    t.column_id = target.id
                    if target.status and t.status != target.status:
                        apply_status(t, target.status, now)
                assign_positions(self.db, merged)
                target.task_seq = len(merged)

            self.db.delete(column)
            self.db.flush()
            assign_positions(self.db, board_columns(self.db, board.id))
            logger.info("Column %s deleted from board %s by user %s", column_id, board.id, principal.id)

        run_in_transaction(self.db, _apply)


# ── Read Service ──

class ColumnReadService:
    def __init__(self, db: Session):
        self.db = db

    def _with_tasks(self, columns: list[ColumnModel]) -> list[dict]:
        if not columns:
            return []
        tasks = (
            self.db.query(TaskModel)
            .filter(TaskModel.column_id.in_([c.id for c in columns]))
            .order_by(TaskModel.column_id, TaskModel.position)
            .all()
        )
        assignees = load_assignees(self.db, [t.id for t in tasks])
        by_column: dict[int, list[TaskModel]] = {}
        for t in tasks:
            by_column.setdefault(t.column_id, []).append(t)
        result = []
        for c in columns:
            col_tasks = by_column.get(c.id, [])
            item = column_to_dict(c, [t.id for t in col_tasks])
            item["tasks"] = [task_to_dict(t, assignees.get(t.id, [])) for t in col_tasks]
            result.append(item)
        return result

    def list_columns(self, principal: Principal, board_id: int) -> list[dict]:
        board = get_board(self.db, board_id)
        require(can_view_board(self.db, principal, board), "Insufficient permissions to view this board")
        return self._with_tasks(board_columns(self.db, board.id))

    def get_column(self, principal: Principal, column_id: int) -> dict:
        column = get_column(self.db, column_id)
        board = get_board(self.db, column.board_id)
        require(can_view_board(self.db, principal, board), "Insufficient permissions to view this board")
        return self._with_tasks([column])[0]
