"""
Role permission table and context-aware permission checks.

Roles map to a fixed set of capabilities. A handful of capabilities also depend
on the acting user's relation to the resource (owner, assignee, member); those
checks take a typed context object:

  can_edit_own_projects      -> ProjectContext (user must be the owner)
  can_edit_assigned_tasks    -> TaskContext (user must be an assignee)
  can_view_assigned_projects -> ProjectContext (owner or member)
                                or BoardContext (member, admin or creator)
"""
from dataclasses import dataclass, field
from enum import Enum


ROLES = ("admin", "hr", "employee", "client")


class Capability(str, Enum):
    # Projects
    CREATE_PROJECT = "can_create_project"
    DELETE_PROJECT = "can_delete_project"
    EDIT_ALL_PROJECTS = "can_edit_all_projects"
    EDIT_OWN_PROJECTS = "can_edit_own_projects"
    VIEW_ALL_PROJECTS = "can_view_all_projects"
    VIEW_ASSIGNED_PROJECTS = "can_view_assigned_projects"
    ARCHIVE_PROJECT = "can_archive_project"
    # Boards
    CREATE_BOARD = "can_create_board"
    DELETE_BOARD = "can_delete_board"
    EDIT_BOARD_SETTINGS = "can_edit_board_settings"
    INVITE_BOARD_MEMBERS = "can_invite_board_members"
    REMOVE_BOARD_MEMBERS = "can_remove_board_members"
    ARCHIVE_BOARD = "can_archive_board"
    # Tasks
    CREATE_TASK = "can_create_task"
    DELETE_TASK = "can_delete_task"
    EDIT_ALL_TASKS = "can_edit_all_tasks"
    EDIT_ASSIGNED_TASKS = "can_edit_assigned_tasks"
    ASSIGN_TASKS = "can_assign_tasks"
    MOVE_TASKS_BETWEEN_COLUMNS = "can_move_tasks_between_columns"
    SET_TASK_PRIORITY = "can_set_task_priority"
    SET_TASK_DUE_DATE = "can_set_task_due_date"
    ADD_TASK_COMMENTS = "can_add_task_comments"
    ADD_TASK_ATTACHMENTS = "can_add_task_attachments"
    VIEW_TASK_TIME_TRACKING = "can_view_task_time_tracking"
    EDIT_TASK_TIME_TRACKING = "can_edit_task_time_tracking"
    # Columns
    CREATE_COLUMN = "can_create_column"
    DELETE_COLUMN = "can_delete_column"
    REORDER_COLUMNS = "can_reorder_columns"
    SET_WIP_LIMITS = "can_set_wip_limits"
    # People and reporting
    VIEW_ALL_USERS = "can_view_all_users"
    MANAGE_PROJECT_MEMBERS = "can_manage_project_members"
    VIEW_REPORTS = "can_view_reports"
    EXPORT_DATA = "can_export_data"
    # Administration
    MANAGE_TEMPLATES = "can_manage_templates"
    MANAGE_INTEGRATIONS = "can_manage_integrations"
    VIEW_SYSTEM_ACTIVITY = "can_view_system_activity"


C = Capability

_HR_DENIED = {
    C.DELETE_PROJECT,
    C.DELETE_BOARD,
    C.DELETE_TASK,
    C.EDIT_TASK_TIME_TRACKING,
    C.DELETE_COLUMN,
    C.MANAGE_INTEGRATIONS,
}

ROLE_PERMISSIONS: dict[str, frozenset[Capability]] = {
    "admin": frozenset(Capability),
    "hr": frozenset(set(Capability) - _HR_DENIED),
    "employee": frozenset({
        C.VIEW_ASSIGNED_PROJECTS,
        C.CREATE_TASK,
        C.EDIT_ASSIGNED_TASKS,
        C.MOVE_TASKS_BETWEEN_COLUMNS,
        C.ADD_TASK_COMMENTS,
        C.ADD_TASK_ATTACHMENTS,
        C.VIEW_TASK_TIME_TRACKING,
        C.EDIT_TASK_TIME_TRACKING,
    }),
    "client": frozenset({
        C.VIEW_ASSIGNED_PROJECTS,
        C.CREATE_TASK,
        C.ADD_TASK_COMMENTS,
        C.ADD_TASK_ATTACHMENTS,
    }),
}


# ── Contexts ──

@dataclass(frozen=True)
class ProjectContext:
    owner_id: int
    member_ids: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class TaskContext:
    creator_id: int
    assignee_ids: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class BoardContext:
    creator_id: int
    member_ids: frozenset[int] = field(default_factory=frozenset)
    admin_ids: frozenset[int] = field(default_factory=frozenset)


PermissionContext = ProjectContext | TaskContext | BoardContext


@dataclass(frozen=True)
class Principal:
    """The authenticated actor of a request."""
    id: int
    role: str
    name: str = ""


# ── Checks ──

def get_role_permissions(role: str) -> frozenset[Capability]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role: str, capability: Capability) -> bool:
    """Pure lookup in the role table; unknown roles have no permissions."""
    return capability in get_role_permissions(role)


def _require_context(capability: Capability, context, *kinds):
    if not isinstance(context, kinds):
        expected = " or ".join(k.__name__ for k in kinds)
        raise TypeError(f"{capability.value} requires {expected}, got {type(context).__name__}")


def can_user_perform_action(
    principal: Principal,
    capability: Capability,
    context: PermissionContext | None = None,
) -> bool:
    """
    Role permission refined by the user's relation to the resource.

    Raises:
        TypeError: the capability needs a context of a different kind
    """
    if not has_permission(principal.role, capability):
        return False

    if capability is C.EDIT_OWN_PROJECTS:
        _require_context(capability, context, ProjectContext)
        return context.owner_id == principal.id

    if capability is C.EDIT_ASSIGNED_TASKS:
        _require_context(capability, context, TaskContext)
        return principal.id in context.assignee_ids

    if capability is C.VIEW_ASSIGNED_PROJECTS:
        _require_context(capability, context, ProjectContext, BoardContext)
        if isinstance(context, ProjectContext):
            return principal.id == context.owner_id or principal.id in context.member_ids
        return (
            principal.id == context.creator_id
            or principal.id in context.member_ids
            or principal.id in context.admin_ids
        )

    return True


def can_edit_task(principal: Principal, context: TaskContext) -> bool:
    """Edit-all, assigned with edit-assigned, or the task's creator."""
    return (
        has_permission(principal.role, C.EDIT_ALL_TASKS)
        or can_user_perform_action(principal, C.EDIT_ASSIGNED_TASKS, context)
        or context.creator_id == principal.id
    )


def can_edit_project(principal: Principal, context: ProjectContext) -> bool:
    return (
        has_permission(principal.role, C.EDIT_ALL_PROJECTS)
        or can_user_perform_action(principal, C.EDIT_OWN_PROJECTS, context)
    )


def can_view_project(principal: Principal, context: ProjectContext) -> bool:
    return (
        has_permission(principal.role, C.VIEW_ALL_PROJECTS)
        or can_user_perform_action(principal, C.VIEW_ASSIGNED_PROJECTS, context)
    )
