"""
Tests for the role permission table and context-aware checks.
"""
import pytest

from app.domain.permissions import (
    ROLE_PERMISSIONS, ROLES, BoardContext, Capability, Principal, ProjectContext, TaskContext,
    can_edit_project, can_edit_task, can_user_perform_action, can_view_project,
    get_role_permissions, has_permission,
)


C = Capability


class TestRoleTable:
    def test_every_role_has_an_entry(self):
        assert set(ROLES) == set(ROLE_PERMISSIONS)

    def test_capability_count(self):
        assert len(Capability) == 34

    def test_admin_has_everything(self):
        for cap in Capability:
            assert has_permission("admin", cap)

    @pytest.mark.parametrize("cap", [
        C.DELETE_PROJECT, C.DELETE_BOARD, C.DELETE_TASK,
        C.EDIT_TASK_TIME_TRACKING, C.DELETE_COLUMN, C.MANAGE_INTEGRATIONS,
    ])
    def test_hr_denied(self, cap):
        assert not has_permission("hr", cap)

    def test_hr_has_the_rest(self):
        assert len(get_role_permissions("hr")) == len(Capability) - 6
        assert has_permission("hr", C.CREATE_PROJECT)
        assert has_permission("hr", C.EDIT_ALL_TASKS)

    def test_employee(self):
        perms = get_role_permissions("employee")
        assert C.MOVE_TASKS_BETWEEN_COLUMNS in perms
        assert C.EDIT_TASK_TIME_TRACKING in perms
        assert C.CREATE_PROJECT not in perms
        assert C.EDIT_ALL_TASKS not in perms
        assert len(perms) == 8

    def test_client(self):
        perms = get_role_permissions("client")
        assert perms == {C.VIEW_ASSIGNED_PROJECTS, C.CREATE_TASK, C.ADD_TASK_COMMENTS, C.ADD_TASK_ATTACHMENTS}
        assert not has_permission("client", C.MOVE_TASKS_BETWEEN_COLUMNS)

    def test_unknown_role_has_nothing(self):
        assert get_role_permissions("guest") == frozenset()
        assert not has_permission("guest", C.CREATE_TASK)

    def test_has_permission_is_pure(self):
        first = [has_permission(role, cap) for role in ROLES for cap in Capability]
        second = [has_permission(role, cap) for role in ROLES for cap in Capability]
        assert first == second


class TestContextChecks:
    def test_edit_own_project_requires_owner(self):
        hr = Principal(id=1, role="hr")
        assert can_user_perform_action(hr, C.EDIT_OWN_PROJECTS, ProjectContext(owner_id=1))
        assert not can_user_perform_action(hr, C.EDIT_OWN_PROJECTS, ProjectContext(owner_id=2))

    def test_edit_assigned_task_requires_assignee(self):
        emp = Principal(id=5, role="employee")
        assert can_user_perform_action(emp, C.EDIT_ASSIGNED_TASKS, TaskContext(creator_id=1, assignee_ids=frozenset({5})))
        assert not can_user_perform_action(emp, C.EDIT_ASSIGNED_TASKS, TaskContext(creator_id=1))

    def test_view_assigned_accepts_project_or_board(self):
        client = Principal(id=7, role="client")
        assert can_user_perform_action(client, C.VIEW_ASSIGNED_PROJECTS, ProjectContext(owner_id=1, member_ids=frozenset({7})))
        assert can_user_perform_action(client, C.VIEW_ASSIGNED_PROJECTS, BoardContext(creator_id=1, admin_ids=frozenset({7})))
        assert not can_user_perform_action(client, C.VIEW_ASSIGNED_PROJECTS, BoardContext(creator_id=1))

    def test_wrong_context_kind_raises(self):
        admin = Principal(id=1, role="admin")
        with pytest.raises(TypeError):
            can_user_perform_action(admin, C.EDIT_ASSIGNED_TASKS, ProjectContext(owner_id=1))
        with pytest.raises(TypeError):
            can_user_perform_action(admin, C.EDIT_OWN_PROJECTS, None)

    def test_role_without_capability_short_circuits(self):
        client = Principal(id=1, role="client")
        # no TypeError: the role check fails before the context is inspected
        assert not can_user_perform_action(client, C.EDIT_OWN_PROJECTS, None)

    def test_capability_without_context(self):
        assert can_user_perform_action(Principal(id=1, role="employee"), C.CREATE_TASK)


class TestCompositeChecks:
    def test_can_edit_task(self):
        ctx = TaskContext(creator_id=1, assignee_ids=frozenset({2}))
        assert can_edit_task(Principal(id=9, role="hr"), ctx)
        assert can_edit_task(Principal(id=2, role="employee"), ctx)
        assert can_edit_task(Principal(id=1, role="client"), ctx)
        assert not can_edit_task(Principal(id=3, role="employee"), ctx)
        assert not can_edit_task(Principal(id=2, role="client"), ctx)

    def test_can_edit_project(self):
        ctx = ProjectContext(owner_id=1)
        assert can_edit_project(Principal(id=2, role="admin"), ctx)
        assert not can_edit_project(Principal(id=1, role="employee"), ctx)

    def test_can_view_project(self):
        ctx = ProjectContext(owner_id=1, member_ids=frozenset({4}))
        assert can_view_project(Principal(id=4, role="employee"), ctx)
        assert not can_view_project(Principal(id=5, role="employee"), ctx)
        assert can_view_project(Principal(id=5, role="hr"), ctx)
