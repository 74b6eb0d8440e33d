"""
Task activity log (append-only).
"""
from sqlalchemy.orm import Session

from app.application.serializers import activity_to_dict
from app.domain.permissions import Principal
from app.infrastructure.db.models import TaskActivityModel

ACTIVITY_TYPES = (
    "created",
    "updated",
    "moved",
    "assigned",
    "commented",
    "completed",
    "archived",
    "restored",
)


def record_activity(
    db: Session,
    task_id: int,
    actor: Principal,
    activity_type: str,
    description: str,
    old_value: dict | None = None,
    new_value: dict | None = None,
    metadata: dict | None = None,
) -> TaskActivityModel:
    """Append an activity row to the current transaction."""
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {activity_type}")
    row = TaskActivityModel(
        task_id=task_id,
        activity_type=activity_type,
        actor_id=actor.id,
        actor_name=actor.name or f"user {actor.id}",
        description=description[:500],
        old_value=old_value,
        new_value=new_value,
        metadata_json=metadata,
    )
    db.add(row)
    db.flush()
    return row


class ActivityReadService:
    def __init__(self, db: Session):
        self.db = db

    def list_for_task(self, task_id: int, page: int = 1, limit: int = 50) -> dict:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        q = self.db.query(TaskActivityModel).filter(TaskActivityModel.task_id == task_id)
        total = q.count()
        rows = (
            q.order_by(TaskActivityModel.created_at.desc(), TaskActivityModel.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "activities": [activity_to_dict(a) for a in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }
