"""
Tests for the project dashboard read model.
"""
from datetime import timedelta

import pytest

from app.application.boards import CreateBoardUseCase
from app.application.dashboard import DashboardService
from app.application.projects import AddProjectMembersUseCase, CreateProjectUseCase
from app.application.tasks import CreateTaskUseCase
from app.infrastructure.db.models import ColumnModel
from app.utils.dates import utcnow


@pytest.fixture
def hr(make_principal):
    return make_principal("hr")


@pytest.fixture
def board(db_session, hr):
    project_id = CreateProjectUseCase(db_session).execute(hr, name="Website", key="WEB")
    board_id = CreateBoardUseCase(db_session).execute(hr, project_id, "Sprint 1")
    columns = db_session.query(ColumnModel).filter_by(board_id=board_id).order_by(ColumnModel.position).all()
    return project_id, board_id, [c.id for c in columns]


def test_project_stats(db_session, hr, board):
    project_id, board_id, cols = board
    now = utcnow()
    create = CreateTaskUseCase(db_session).execute
    create(hr, cols[0], "Overdue", due_date=now - timedelta(days=2), assignee_ids=[hr.id])
    create(hr, cols[0], "Upcoming", due_date=now + timedelta(days=2), assignee_ids=[hr.id])
    create(hr, cols[3], "Shipped")

    overview = DashboardService(db_session).projects_overview(hr)

    [project] = overview["projects"]
    assert project["id"] == project_id
    assert project["stats"] == {
        "total_tasks": 3,
        "completed_tasks": 1,
        "overdue_tasks": 1,
        "my_tasks": 2,
        "completion_rate": 33,
    }
    assert [t["title"] for t in overview["upcoming_tasks"]] == ["Upcoming"]
    assert [b["id"] for b in overview["recent_boards"]] == [board_id]
    assert overview["stats"]["total_projects"] == 1
    assert overview["stats"]["total_tasks"] == 3


def test_only_visible_projects(db_session, hr, board, make_principal):
    outsider = make_principal("employee")
    assert DashboardService(db_session).projects_overview(outsider)["projects"] == []


def test_member_sees_project(db_session, hr, board, make_principal):
    project_id, _, _ = board
    member = make_principal("employee")
    AddProjectMembersUseCase(db_session).execute(hr, project_id, [member.id])

    overview = DashboardService(db_session).projects_overview(member)
    assert [p["id"] for p in overview["projects"]] == [project_id]
    assert overview["projects"][0]["stats"]["completion_rate"] == 0
