"""
Tests for boards and columns: default columns, reorder, column deletion with
task transfer, board archiving and visibility.
"""
import pytest

from app.application.boards import (
    BoardReadService, CreateBoardUseCase, DeleteBoardUseCase, UpdateBoardUseCase,
)
from app.application.columns import (
    ColumnReadService, CreateColumnUseCase, DeleteColumnUseCase, ReorderColumnsUseCase,
    UpdateColumnUseCase,
)
from app.application.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.application.projects import CreateProjectUseCase
from app.application.tasks import CreateTaskUseCase
from app.infrastructure.db.models import (
    BoardMemberModel, BoardModel, ColumnModel, EmailOutboxModel, NotificationModel, TaskModel,
)


@pytest.fixture
def hr(make_principal):
    return make_principal("hr")


@pytest.fixture
def project_id(db_session, hr):
    return CreateProjectUseCase(db_session).execute(hr, name="Website", key="WEB")


@pytest.fixture
def board_id(db_session, hr, project_id):
    return CreateBoardUseCase(db_session).execute(hr, project_id, "Sprint 1")


def _columns(db, board_id):
    return db.query(ColumnModel).filter_by(board_id=board_id).order_by(ColumnModel.position).all()


def _task_ids(db, column_id):
    return [t.id for t in db.query(TaskModel).filter_by(column_id=column_id).order_by(TaskModel.position)]


# ── Boards ──

class TestCreateBoard:
    def test_default_columns(self, db_session, board_id):
        cols = _columns(db_session, board_id)
        assert [(c.title, c.color, c.status, c.position) for c in cols] == [
            ("To Do", "#6B7280", "todo", 0),
            ("In Progress", "#3B82F6", "in-progress", 1),
            ("Review", "#F59E0B", "review", 2),
            ("Done", "#10B981", "done", 3),
        ]
        assert all(c.task_seq == 0 for c in cols)

    def test_creator_is_admin_member(self, db_session, hr, board_id):
        [row] = db_session.query(BoardMemberModel).filter_by(board_id=board_id).all()
        assert (row.user_id, row.is_admin) == (hr.id, True)

    def test_invited_members_are_notified(self, db_session, hr, project_id, make_principal):
        emp = make_principal("employee")
        CreateBoardUseCase(db_session).execute(hr, project_id, "Sprint 2", member_ids=[emp.id])
        [mail] = db_session.query(EmailOutboxModel).filter_by(template="board_invitation").all()
        assert mail.context["board_title"] == "Sprint 2"
        [note] = db_session.query(NotificationModel).filter_by(user_id=emp.id).all()
        assert note.notification_type == "board_invitation"

    def test_invalid_visibility(self, db_session, hr, project_id):
        with pytest.raises(ValidationError, match="visibility"):
            CreateBoardUseCase(db_session).execute(hr, project_id, "X", visibility="secret")

    def test_employee_cannot_create(self, db_session, project_id, make_principal):
        with pytest.raises(PermissionDeniedError):
            CreateBoardUseCase(db_session).execute(make_principal("employee"), project_id, "X")

    def test_missing_project(self, db_session, hr):
        with pytest.raises(NotFoundError):
            CreateBoardUseCase(db_session).execute(hr, 999, "X")


class TestBoardLifecycle:
    def test_update_members(self, db_session, hr, board_id, make_principal):
        emp = make_principal("employee")
        UpdateBoardUseCase(db_session).execute(hr, board_id, title="Renamed", admin_ids=[emp.id])
        board = db_session.get(BoardModel, board_id)
        assert board.title == "Renamed"
        admins = {r.user_id for r in db_session.query(BoardMemberModel).filter_by(board_id=board_id, is_admin=True)}
        assert admins == {hr.id, emp.id}

    def test_archive_and_list(self, db_session, hr, board_id, admin_principal):
        DeleteBoardUseCase(db_session).execute(admin_principal, board_id)
        assert db_session.get(BoardModel, board_id).is_archived is True
        service = BoardReadService(db_session)
        assert service.list_boards(hr) == []
        assert [b["id"] for b in service.list_boards(hr, archived=True)] == [board_id]

    def test_permanent_delete(self, db_session, hr, board_id, admin_principal):
        column = _columns(db_session, board_id)[0]
        CreateTaskUseCase(db_session).execute(hr, column.id, "Doomed")
        DeleteBoardUseCase(db_session).execute(admin_principal, board_id, permanent=True)
        assert db_session.query(BoardModel).count() == 0
        assert db_session.query(TaskModel).count() == 0

    def test_hr_cannot_delete(self, db_session, hr, board_id):
        with pytest.raises(PermissionDeniedError):
            DeleteBoardUseCase(db_session).execute(hr, board_id)


class TestBoardVisibility:
    def test_team_board_visible_to_project_members(self, db_session, hr, make_principal):
        member = make_principal("employee")
        outsider = make_principal("employee")
        pid = CreateProjectUseCase(db_session).execute(hr, name="Team", key="TEAM", member_ids=[member.id])
        bid = CreateBoardUseCase(db_session).execute(hr, pid, "Team board")
        service = BoardReadService(db_session)
        assert service.get_board(member, bid)["id"] == bid
        with pytest.raises(PermissionDeniedError):
            service.get_board(outsider, bid)

    def test_private_board_needs_membership(self, db_session, hr, project_id, make_principal):
        emp = make_principal("employee")
        bid = CreateBoardUseCase(db_session).execute(hr, project_id, "Private", visibility="private")
        with pytest.raises(PermissionDeniedError):
            BoardReadService(db_session).get_board(emp, bid)
        UpdateBoardUseCase(db_session).execute(hr, bid, member_ids=[emp.id])
        assert BoardReadService(db_session).get_board(emp, bid)["member_ids"] == sorted([hr.id, emp.id])


# ── Columns ──

class TestCreateColumn:
    def test_append_with_seeded_status(self, db_session, hr, board_id):
        cid = CreateColumnUseCase(db_session).execute(hr, board_id, "Testing")
        column = db_session.get(ColumnModel, cid)
        assert column.position == 4
        assert column.status == "review"

    def test_unmatched_title_has_no_status(self, db_session, hr, board_id):
        cid = CreateColumnUseCase(db_session).execute(hr, board_id, "Backlog")
        assert db_session.get(ColumnModel, cid).status is None

    def test_partial_title_has_no_status(self, db_session, hr, board_id):
        cid = CreateColumnUseCase(db_session).execute(hr, board_id, "Not Done")
        assert db_session.get(ColumnModel, cid).status is None

    def test_insert_at_position(self, db_session, hr, board_id):
        cid = CreateColumnUseCase(db_session).execute(hr, board_id, "Backlog", position=0, status="todo")
        cols = _columns(db_session, board_id)
        assert [c.id for c in cols][0] == cid
        assert [c.position for c in cols] == [0, 1, 2, 3, 4]
        assert cols[0].status == "todo"

    def test_validation(self, db_session, hr, board_id):
        with pytest.raises(ValidationError, match="hex"):
            CreateColumnUseCase(db_session).execute(hr, board_id, "Bad", color="blue")
        with pytest.raises(ValidationError, match="WIP"):
            CreateColumnUseCase(db_session).execute(hr, board_id, "Bad", wip_limit=0)
        with pytest.raises(ValidationError, match="status"):
            CreateColumnUseCase(db_session).execute(hr, board_id, "Bad", status="blocked")

    def test_employee_cannot_create(self, db_session, board_id, make_principal):
        with pytest.raises(PermissionDeniedError):
            CreateColumnUseCase(db_session).execute(make_principal("employee"), board_id, "Mine")


class TestUpdateColumn:
    def test_rename_keeps_status(self, db_session, hr, board_id):
        done = _columns(db_session, board_id)[3]
        UpdateColumnUseCase(db_session).execute(hr, done.id, title="Shipped", wip_limit=5)
        column = db_session.get(ColumnModel, done.id)
        assert (column.title, column.status, column.wip_limit) == ("Shipped", "done", 5)

    def test_unknown_field(self, db_session, hr, board_id):
        column = _columns(db_session, board_id)[0]
        with pytest.raises(ValidationError):
            UpdateColumnUseCase(db_session).execute(hr, column.id, position=3)


class TestReorderColumns:
    def test_round_trip(self, db_session, hr, board_id):
        ids = [c.id for c in _columns(db_session, board_id)]
        new_order = [ids[3], ids[1], ids[0], ids[2]]

        result = ReorderColumnsUseCase(db_session).execute(hr, board_id, new_order)

        assert result == new_order
        assert [c.id for c in _columns(db_session, board_id)] == new_order
        assert BoardReadService(db_session).get_board(hr, board_id)["column_order"] == new_order

    @pytest.mark.parametrize("transform", [
        lambda ids: ids[:3],
        lambda ids: ids + [ids[0]],
        lambda ids: ids[:3] + [9999],
    ])
    def test_not_a_permutation(self, db_session, hr, board_id, transform):
        ids = [c.id for c in _columns(db_session, board_id)]
        with pytest.raises(ValidationError):
            ReorderColumnsUseCase(db_session).execute(hr, board_id, transform(ids))
        assert [c.id for c in _columns(db_session, board_id)] == ids

    def test_empty(self, db_session, hr, board_id):
        with pytest.raises(ValidationError):
            ReorderColumnsUseCase(db_session).execute(hr, board_id, [])


class TestDeleteColumn:
    def test_delete_empty(self, db_session, admin_principal, board_id):
        cols = _columns(db_session, board_id)
        DeleteColumnUseCase(db_session).execute(admin_principal, cols[1].id)
        remaining = _columns(db_session, board_id)
        assert [c.id for c in remaining] == [cols[0].id, cols[2].id, cols[3].id]
        assert [c.position for c in remaining] == [0, 1, 2]

    def test_non_empty_requires_target(self, db_session, hr, admin_principal, board_id):
        todo = _columns(db_session, board_id)[0]
        CreateTaskUseCase(db_session).execute(hr, todo.id, "Task")
        with pytest.raises(ValidationError, match="moveTasksTo"):
            DeleteColumnUseCase(db_session).execute(admin_principal, todo.id)

    def test_moves_tasks_to_target(self, db_session, hr, admin_principal, board_id):
        todo, doing, review, done = _columns(db_session, board_id)
        todo_id = todo.id
        kept = CreateTaskUseCase(db_session).execute(hr, done.id, "Already done")
        moved = [CreateTaskUseCase(db_session).execute(hr, todo.id, f"Task {i}") for i in range(3)]

        DeleteColumnUseCase(db_session).execute(admin_principal, todo_id, move_tasks_to=done.id)

        assert db_session.get(ColumnModel, todo_id) is None
        assert _task_ids(db_session, done.id) == [kept] + moved
        tasks = db_session.query(TaskModel).filter_by(column_id=done.id).order_by(TaskModel.position).all()
        assert [t.position for t in tasks] == [0, 1, 2, 3]
        assert all(t.status == "done" for t in tasks)
        assert db_session.get(ColumnModel, done.id).task_seq == 4
        assert [c.position for c in _columns(db_session, board_id)] == [0, 1, 2]

    def test_target_on_other_board(self, db_session, hr, admin_principal, project_id, board_id):
        other = CreateBoardUseCase(db_session).execute(hr, project_id, "Other")
        todo = _columns(db_session, board_id)[0]
        CreateTaskUseCase(db_session).execute(hr, todo.id, "Task")
        with pytest.raises(ValidationError, match="same board"):
            DeleteColumnUseCase(db_session).execute(
                admin_principal, todo.id, move_tasks_to=_columns(db_session, other)[0].id,
            )
        assert db_session.get(ColumnModel, todo.id) is not None


class TestColumnReadService:
    def test_list_columns_with_tasks(self, db_session, hr, board_id):
        todo = _columns(db_session, board_id)[0]
        first = CreateTaskUseCase(db_session).execute(hr, todo.id, "First")
        second = CreateTaskUseCase(db_session).execute(hr, todo.id, "Second")
        columns = ColumnReadService(db_session).list_columns(hr, board_id)
        assert [c["title"] for c in columns] == ["To Do", "In Progress", "Review", "Done"]
        assert columns[0]["task_ids"] == [first, second]
