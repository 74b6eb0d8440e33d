"""
Tests for Projects use-cases and read service.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.application.boards import CreateBoardUseCase
from app.application.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.application.projects import (
    AddProjectMembersUseCase, CreateProjectUseCase, DeleteProjectUseCase, ProjectReadService,
    RemoveProjectMemberUseCase, UpdateProjectUseCase,
)
from app.application.tasks import CreateTaskUseCase
from app.infrastructure.db.models import (
    BoardModel, ColumnModel, ProjectMemberModel, ProjectModel, TaskModel,
)


@pytest.fixture
def hr(make_principal):
    return make_principal("hr")


def _create(db, principal, key="WEB", **kw):
    values = dict(name="Website", key=key)
    values.update(kw)
    return CreateProjectUseCase(db).execute(principal, **values)


# ── CreateProject ──

class TestCreateProject:
    def test_create_basic(self, db_session, hr):
        pid = _create(db_session, hr, key="web")
        p = db_session.get(ProjectModel, pid)
        assert p.key == "WEB"
        assert p.status == "planning"
        assert p.priority == "medium"
        assert p.owner_id == hr.id
        members = [m.user_id for m in db_session.query(ProjectMemberModel).filter_by(project_id=pid)]
        assert members == [hr.id]

    def test_create_with_all_fields(self, db_session, hr, make_principal):
        client = make_principal("client")
        emp = make_principal("employee")
        pid = _create(
            db_session, hr,
            description="Marketing site",
            status="active",
            priority="high",
            start_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 6, 30, tzinfo=timezone.utc),
            budget="1500.50",
            currency="eur",
            client_id=client.id,
            member_ids=[emp.id],
            tags=["web", "web", "q1"],
        )
        p = db_session.get(ProjectModel, pid)
        assert p.budget == Decimal("1500.50")
        assert p.currency == "EUR"
        assert p.client_id == client.id
        assert p.tags == ["web", "q1"]
        members = {m.user_id for m in db_session.query(ProjectMemberModel).filter_by(project_id=pid)}
        assert members == {hr.id, emp.id}

    def test_duplicate_key(self, db_session, hr):
        _create(db_session, hr)
        with pytest.raises(ConflictError, match="key"):
            _create(db_session, hr, name="Another")

    @pytest.mark.parametrize("key", ["", "W", "WEB1", "TOOLONGKEYX"])
    def test_invalid_key(self, db_session, hr, key):
        with pytest.raises(ValidationError, match="key"):
            _create(db_session, hr, key=key)

    def test_end_before_start(self, db_session, hr):
        with pytest.raises(ValidationError, match="End date"):
            _create(
                db_session, hr,
                start_date=datetime(2026, 6, 1, tzinfo=timezone.utc),
                end_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
            )

    def test_employee_cannot_create(self, db_session, make_principal):
        with pytest.raises(PermissionDeniedError):
            _create(db_session, make_principal("employee"))

    def test_unknown_member(self, db_session, hr):
        with pytest.raises(ValidationError, match="Users not found"):
            _create(db_session, hr, member_ids=[404])
        assert db_session.query(ProjectModel).count() == 0


# ── UpdateProject ──

class TestUpdateProject:
    def test_owner_updates(self, db_session, hr):
        pid = _create(db_session, hr)
        UpdateProjectUseCase(db_session).execute(hr, pid, name="Website v2", progress=40, status="active")
        p = db_session.get(ProjectModel, pid)
        assert (p.name, p.progress, p.status) == ("Website v2", 40, "active")

    def test_unknown_field(self, db_session, hr):
        pid = _create(db_session, hr)
        with pytest.raises(ValidationError, match="key"):
            UpdateProjectUseCase(db_session).execute(hr, pid, key="NEW")

    def test_progress_range(self, db_session, hr):
        pid = _create(db_session, hr)
        with pytest.raises(ValidationError, match="Progress"):
            UpdateProjectUseCase(db_session).execute(hr, pid, progress=101)

    def test_member_employee_cannot_edit(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        pid = _create(db_session, hr, member_ids=[emp.id])
        with pytest.raises(PermissionDeniedError):
            UpdateProjectUseCase(db_session).execute(emp, pid, name="Hijacked")


# ── Members ──

class TestMembers:
    def test_add_and_remove(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        pid = _create(db_session, hr)
        assert AddProjectMembersUseCase(db_session).execute(hr, pid, [emp.id, emp.id]) == [emp.id]
        assert AddProjectMembersUseCase(db_session).execute(hr, pid, [emp.id]) == []

        RemoveProjectMemberUseCase(db_session).execute(hr, pid, emp.id)
        members = {m.user_id for m in db_session.query(ProjectMemberModel).filter_by(project_id=pid)}
        assert members == {hr.id}

    def test_owner_cannot_be_removed(self, db_session, hr, admin_principal):
        pid = _create(db_session, hr)
        with pytest.raises(ValidationError, match="owner"):
            RemoveProjectMemberUseCase(db_session).execute(admin_principal, pid, hr.id)

    def test_member_may_leave(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        pid = _create(db_session, hr, member_ids=[emp.id])
        RemoveProjectMemberUseCase(db_session).execute(emp, pid, emp.id)

    def test_employee_cannot_add(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        other = make_principal("employee")
        pid = _create(db_session, hr, member_ids=[emp.id])
        with pytest.raises(PermissionDeniedError):
            AddProjectMembersUseCase(db_session).execute(emp, pid, [other.id])


# ── DeleteProject ──

class TestDeleteProject:
    def test_hr_cannot_delete(self, db_session, hr):
        pid = _create(db_session, hr)
        with pytest.raises(PermissionDeniedError):
            DeleteProjectUseCase(db_session).execute(hr, pid)

    def test_admin_deletes_everything(self, db_session, hr, admin_principal):
        pid = _create(db_session, hr)
        board_id = CreateBoardUseCase(db_session).execute(hr, pid, "Sprint")
        column = db_session.query(ColumnModel).filter_by(board_id=board_id).order_by(ColumnModel.position).first()
        CreateTaskUseCase(db_session).execute(hr, column.id, "Ship it")

        DeleteProjectUseCase(db_session).execute(admin_principal, pid)

        assert db_session.query(ProjectModel).count() == 0
        assert db_session.query(BoardModel).count() == 0
        assert db_session.query(ColumnModel).count() == 0
        assert db_session.query(TaskModel).count() == 0

    def test_missing(self, db_session, admin_principal):
        with pytest.raises(NotFoundError):
            DeleteProjectUseCase(db_session).execute(admin_principal, 12345)


# ── Read service ──

class TestProjectReadService:
    def test_visibility(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        outsider = make_principal("employee")
        client = make_principal("client")
        visible = _create(db_session, hr, key="ONE", member_ids=[emp.id])
        _create(db_session, hr, key="TWO")
        for_client = _create(db_session, hr, key="CLI", client_id=client.id)

        service = ProjectReadService(db_session)
        assert len(service.list_projects(hr)) == 3
        assert [p["id"] for p in service.list_projects(emp)] == [visible]
        assert service.list_projects(outsider) == []
        assert [p["id"] for p in service.list_projects(client)] == [for_client]

        with pytest.raises(PermissionDeniedError):
            service.get_project(outsider, visible)

    def test_filters(self, db_session, hr):
        _create(db_session, hr, key="ONE", name="Alpha", status="active")
        _create(db_session, hr, key="TWO", name="Beta", priority="high")
        service = ProjectReadService(db_session)
        assert [p["name"] for p in service.list_projects(hr, status=["active"])] == ["Alpha"]
        assert [p["name"] for p in service.list_projects(hr, priority=["high"])] == ["Beta"]
        assert [p["name"] for p in service.list_projects(hr, search="alp")] == ["Alpha"]

    def test_get_project_nests_boards(self, db_session, hr):
        pid = _create(db_session, hr)
        CreateBoardUseCase(db_session).execute(hr, pid, "Sprint 1")
        data = ProjectReadService(db_session).get_project(hr, pid)
        assert data["member_ids"] == [hr.id]
        [board] = data["boards"]
        assert board["title"] == "Sprint 1"
        assert len(board["columns"]) == 4

    def test_list_members(self, db_session, hr, make_principal):
        emp = make_principal("employee")
        pid = _create(db_session, hr, member_ids=[emp.id])
        members = ProjectReadService(db_session).list_members(emp, pid)
        assert {(m["id"], m["is_owner"]) for m in members} == {(hr.id, True), (emp.id, False)}
