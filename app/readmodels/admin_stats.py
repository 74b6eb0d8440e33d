"""
Admin statistics readmodel: user, workload and storage figures for the admin API.

All functions accept a SQLAlchemy Session and return plain dicts/lists.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.infrastructure.db.models import (
    BoardModel, ColumnModel, EmailOutboxModel, NotificationModel, OtpCode, PendingRegistration,
    ProjectModel, TaskActivityModel, TaskCommentModel, TaskModel, User,
)

logger = logging.getLogger(__name__)

_COUNTED_MODELS = (
    User, PendingRegistration, OtpCode, ProjectModel, BoardModel, ColumnModel,
    TaskModel, TaskCommentModel, TaskActivityModel, NotificationModel, EmailOutboxModel,
)


def _grouped_counts(db: Session, column) -> dict:
    return {key: count for key, count in db.query(column, func.count()).group_by(column).all()}


def get_overview_stats(db: Session, now: datetime) -> dict:
    """Aggregate stats for /api/admin/overview."""
    d7 = now - timedelta(days=7)
    d30 = now - timedelta(days=30)

    # ── Users ──
    total_users = db.query(func.count(User.id)).scalar() or 0
    new_7d = db.query(func.count(User.id)).filter(User.created_at >= d7).scalar() or 0
    active_30d = db.query(func.count(User.id)).filter(User.last_seen_at >= d30).scalar() or 0

    # ── Work ──
    task_status = _grouped_counts(db, TaskModel.status)

    return {
        "users": {
            "total": total_users,
            "new_7d": new_7d,
            "active_30d": active_30d,
            "by_role": _grouped_counts(db, User.role),
            "by_status": _grouped_counts(db, User.account_status),
            "awaiting_id": db.query(func.count(User.id)).filter(
                User.role != "admin", User.id_assigned == False,  # noqa: E712
            ).scalar() or 0,
            "pending_registrations": db.query(func.count(PendingRegistration.id)).scalar() or 0,
        },
        "projects": {
            "total": db.query(func.count(ProjectModel.id)).scalar() or 0,
            "by_status": _grouped_counts(db, ProjectModel.status),
        },
        "boards": {
            "total": db.query(func.count(BoardModel.id)).scalar() or 0,
            "archived": db.query(func.count(BoardModel.id)).filter(
                BoardModel.is_archived == True,  # noqa: E712
            ).scalar() or 0,
        },
        "tasks": {
            "total": sum(task_status.values()),
            "by_status": task_status,
        },
        "outbox": _grouped_counts(db, EmailOutboxModel.status),
    }


def get_storage_stats(db: Session) -> dict:
    """Row count per table plus the database size where the backend reports it."""
    tables = []
    total_rows = 0
    for model in _COUNTED_MODELS:
        count = db.query(func.count()).select_from(model).scalar() or 0
        total_rows += count
        tables.append({"table": model.__tablename__, "rows": count})

    size_bytes = None
    if db.get_bind().dialect.name == "postgresql":
        try:
            size_bytes = db.execute(text("SELECT pg_database_size(current_database())")).scalar()
        except SQLAlchemyError:
            logger.exception("Could not read database size")
            db.rollback()

    return {
        "tables": tables,
        "total_rows": total_rows,
        "database_size_bytes": size_bytes,
    }
