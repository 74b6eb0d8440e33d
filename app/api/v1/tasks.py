"""
Tasks API: CRUD, move between columns, comments and the activity log
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_principal
from app.api.envelope import RequestModel, success
from app.application.tasks import (
    AddCommentUseCase, CreateTaskUseCase, DeleteTaskUseCase, MoveTaskUseCase, TaskReadService,
    UpdateTaskUseCase,
)
from app.domain.permissions import Principal


router = APIRouter(prefix="/api/project-management", tags=["tasks"])


class TaskCreateRequest(RequestModel):
    column_id: int | None = None
    board_id: int | None = None
    project_id: int | None = None
    title: str = ""
    description: str | None = None
    priority: str = "medium"
    status: str | None = None
    assignee_ids: list[int] | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: Decimal | None = None
    tags: list[str] | None = None


class TaskUpdateRequest(RequestModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None
    assignee_ids: list[int] | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: Decimal | None = None
    actual_hours: Decimal | None = None
    completion_percentage: int | None = None
    tags: list[str] | None = None
    # Accepted so that attempts to change them are rejected explicitly
    column_id: int | None = None
    board_id: int | None = None
    project_id: int | None = None
    created_by: int | None = None
    position: int | None = None


class TaskMoveRequest(RequestModel):
    task_id: int
    source_column_id: int
    destination_column_id: int
    destination_index: int


class CommentCreateRequest(RequestModel):
    content: str = ""
    mentions: list[int] | None = None


# /tasks/move is declared before /tasks/{task_id}

@router.post("/tasks/move")
def move_task(req: TaskMoveRequest, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    task = MoveTaskUseCase(db).execute(
        principal,
        task_id=req.task_id,
        source_column_id=req.source_column_id,
        destination_column_id=req.destination_column_id,
        destination_index=req.destination_index,
    )
    return success("Task moved successfully", task)


@router.get("/tasks")
def list_tasks(
    assignee: list[int] | None = Query(None),
    priority: list[str] | None = Query(None),
    status: list[str] | None = Query(None),
    board_id: int | None = Query(None, alias="boardId"),
    project_id: int | None = Query(None, alias="projectId"),
    search: str | None = None,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    tasks = TaskReadService(db).list_tasks(
        principal,
        assignee=assignee,
        priority=priority,
        status=status,
        board_id=board_id,
        project_id=project_id,
        search=search,
    )
    return success("Tasks retrieved", tasks)


@router.post("/tasks")
def create_task(req: TaskCreateRequest, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    task_id = CreateTaskUseCase(db).execute(principal, **req.model_dump())
    return success("Task created successfully", TaskReadService(db).get_task(principal, task_id), status_code=201)


@router.get("/tasks/{task_id}")
def get_task(task_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Task retrieved", TaskReadService(db).get_task(principal, task_id))


@router.put("/tasks/{task_id}")
def update_task(
    task_id: int,
    req: TaskUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    task = UpdateTaskUseCase(db).execute(principal, task_id, **req.model_dump(exclude_unset=True))
    return success("Task updated successfully", task)


@router.delete("/tasks/{task_id}")
def delete_task(task_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    DeleteTaskUseCase(db).execute(principal, task_id)
    return success("Task deleted successfully")


@router.get("/tasks/{task_id}/comments")
def list_comments(task_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Comments retrieved", TaskReadService(db).list_comments(principal, task_id))


@router.post("/tasks/{task_id}/comments")
def add_comment(
    task_id: int,
    req: CommentCreateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    comment = AddCommentUseCase(db).execute(principal, task_id, req.content, req.mentions)
    return success("Comment added successfully", comment, status_code=201)


@router.get("/tasks/{task_id}/activities")
def list_activities(
    task_id: int,
    page: int = 1,
    limit: int = 50,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return success("Activities retrieved", TaskReadService(db).list_activities(principal, task_id, page=page, limit=limit))
