"""
Projects API
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_principal
from app.api.envelope import RequestModel, success
from app.application.dashboard import DashboardService
from app.application.projects import (
    AddProjectMembersUseCase, CreateProjectUseCase, DeleteProjectUseCase, ProjectReadService,
    RemoveProjectMemberUseCase, UpdateProjectUseCase,
)
from app.domain.permissions import Principal


router = APIRouter(prefix="/api/project-management", tags=["projects"])


class ProjectCreateRequest(RequestModel):
    name: str = ""
    key: str = ""
    description: str | None = None
    status: str = "planning"
    priority: str = "medium"
    start_date: datetime | None = None
    end_date: datetime | None = None
    budget: Decimal | None = None
    currency: str = "USD"
    client_id: int | None = None
    member_ids: list[int] | None = None
    tags: list[str] | None = None
    is_public: bool = False


class ProjectUpdateRequest(RequestModel):
    name: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    budget: Decimal | None = None
    currency: str | None = None
    progress: int | None = None
    client_id: int | None = None
    tags: list[str] | None = None
    is_public: bool | None = None


class ProjectMembersRequest(RequestModel):
    user_ids: list[int] = []


@router.get("/projects")
def list_projects(
    status: list[str] | None = Query(None),
    priority: list[str] | None = Query(None),
    owner_id: int | None = Query(None, alias="ownerId"),
    client_id: int | None = Query(None, alias="clientId"),
    search: str | None = None,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    projects = ProjectReadService(db).list_projects(
        principal, status=status, priority=priority, owner_id=owner_id, client_id=client_id, search=search,
    )
    return success("Projects retrieved", projects)


@router.post("/projects")
def create_project(
    req: ProjectCreateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    project_id = CreateProjectUseCase(db).execute(principal, **req.model_dump())
    return success("Project created successfully", ProjectReadService(db).get_project(principal, project_id), status_code=201)


@router.get("/projects/{project_id}")
def get_project(project_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Project retrieved", ProjectReadService(db).get_project(principal, project_id))


@router.put("/projects/{project_id}")
def update_project(
    project_id: int,
    req: ProjectUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    UpdateProjectUseCase(db).execute(principal, project_id, **req.model_dump(exclude_unset=True))
    return success("Project updated successfully", ProjectReadService(db).get_project(principal, project_id))


@router.delete("/projects/{project_id}")
def delete_project(project_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    DeleteProjectUseCase(db).execute(principal, project_id)
    return success("Project deleted successfully")


@router.get("/projects/{project_id}/members")
def list_members(project_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Project members retrieved", ProjectReadService(db).list_members(principal, project_id))


@router.post("/projects/{project_id}/members")
def add_members(
    project_id: int,
    req: ProjectMembersRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    added = AddProjectMembersUseCase(db).execute(principal, project_id, req.user_ids)
    return success("Members added successfully", {"added": added})


@router.delete("/projects/{project_id}/members")
def remove_member(
    project_id: int,
    user_id: int = Query(..., alias="userId"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    RemoveProjectMemberUseCase(db).execute(principal, project_id, user_id)
    return success("Member removed successfully")


@router.get("/dashboard/projects")
def projects_dashboard(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Dashboard data retrieved", DashboardService(db).projects_overview(principal))
