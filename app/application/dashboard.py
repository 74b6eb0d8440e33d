"""
Project dashboard read model: per-project task statistics, upcoming work and
recently touched boards for the current user.
"""
from typing import Dict, List

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from app.application.projects import ProjectReadService
from app.application.serializers import board_to_dict, load_assignees, project_to_dict, task_to_dict
from app.domain.permissions import Principal
from app.infrastructure.db.models import BoardModel, ProjectModel, TaskAssigneeModel, TaskModel
from app.utils.dates import utcnow

OPEN_STATUSES = ("todo", "in-progress", "review")
UPCOMING_LIMIT = 10
RECENT_BOARDS_LIMIT = 5


class DashboardService:
    def __init__(self, db: Session):
        self.db = db

    def _task_counts(self, project_ids: List[int], user_id: int, now) -> Dict[int, Dict[str, int]]:
        if not project_ids:
            return {}
        mine = select(TaskAssigneeModel.task_id).where(TaskAssigneeModel.user_id == user_id)
        rows = (
            self.db.query(
                TaskModel.project_id,
                func.count(TaskModel.id).label("total"),
                func.sum(case((TaskModel.status == "done", 1), else_=0)).label("completed"),
                func.sum(case(
                    (and_(TaskModel.due_date < now, TaskModel.status.in_(OPEN_STATUSES)), 1),
                    else_=0,
                )).label("overdue"),
                func.sum(case((TaskModel.id.in_(mine), 1), else_=0)).label("mine"),
            )
            .filter(TaskModel.project_id.in_(project_ids))
            .group_by(TaskModel.project_id)
            .all()
        )
        return {
            row.project_id: {
                "total": row.total,
                "completed": row.completed or 0,
                "overdue": row.overdue or 0,
                "mine": row.mine or 0,
            }
            for row in rows
        }

    def projects_overview(self, principal: Principal) -> dict:
        now = utcnow()
        visible = ProjectReadService(self.db).visible_project_ids_query(principal)
        projects = (
            self.db.query(ProjectModel)
            .filter(ProjectModel.id.in_(visible))
            .order_by(ProjectModel.updated_at.desc(), ProjectModel.id.desc())
            .all()
        )
        project_ids = [p.id for p in projects]
        counts = self._task_counts(project_ids, principal.id, now)

        items = []
        for p in projects:
            c = counts.get(p.id, {"total": 0, "completed": 0, "overdue": 0, "mine": 0})
            item = project_to_dict(p)
            item["stats"] = {
                "total_tasks": c["total"],
                "completed_tasks": c["completed"],
                "overdue_tasks": c["overdue"],
                "my_tasks": c["mine"],
                "completion_rate": round(c["completed"] * 100 / c["total"]) if c["total"] else 0,
            }
            items.append(item)

        upcoming = []
        recent_boards = []
        if project_ids:
            upcoming_rows = (
                self.db.query(TaskModel)
                .join(TaskAssigneeModel, TaskAssigneeModel.task_id == TaskModel.id)
                .filter(
                    TaskAssigneeModel.user_id == principal.id,
                    TaskModel.project_id.in_(project_ids),
                    TaskModel.status.in_(OPEN_STATUSES),
                    TaskModel.due_date.isnot(None),
                    TaskModel.due_date >= now,
                )
                .order_by(TaskModel.due_date, TaskModel.id)
                .limit(UPCOMING_LIMIT)
                .all()
            )
            assignees = load_assignees(self.db, [t.id for t in upcoming_rows])
            upcoming = [task_to_dict(t, assignees.get(t.id, [])) for t in upcoming_rows]

            boards = (
                self.db.query(BoardModel)
                .filter(BoardModel.project_id.in_(project_ids), BoardModel.is_archived == False)  # noqa: E712
                .order_by(BoardModel.updated_at.desc(), BoardModel.id.desc())
                .limit(RECENT_BOARDS_LIMIT)
                .all()
            )
            recent_boards = [board_to_dict(b, []) for b in boards]

        totals = {
            "total_projects": len(projects),
            "active_projects": sum(1 for p in projects if p.status == "active"),
            "total_tasks": sum(c["total"] for c in counts.values()),
            "completed_tasks": sum(c["completed"] for c in counts.values()),
            "overdue_tasks": sum(c["overdue"] for c in counts.values()),
            "my_tasks": sum(c["mine"] for c in counts.values()),
        }
        return {
            "projects": items,
            "upcoming_tasks": upcoming,
            "recent_boards": recent_boards,
            "stats": totals,
        }
