"""
Columns API
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_principal
from app.api.envelope import RequestModel, success
from app.application.columns import ColumnReadService, DeleteColumnUseCase, UpdateColumnUseCase
from app.domain.permissions import Principal


router = APIRouter(prefix="/api/project-management", tags=["columns"])


class ColumnUpdateRequest(RequestModel):
    title: str | None = None
    color: str | None = None
    wip_limit: int | None = None
    is_collapsed: bool | None = None
    status: str | None = None


@router.get("/columns/{column_id}")
def get_column(column_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Column retrieved", ColumnReadService(db).get_column(principal, column_id))


@router.put("/columns/{column_id}")
def update_column(
    column_id: int,
    req: ColumnUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    UpdateColumnUseCase(db).execute(principal, column_id, **req.model_dump(exclude_unset=True))
    return success("Column updated successfully", ColumnReadService(db).get_column(principal, column_id))


@router.delete("/columns/{column_id}")
def delete_column(
    column_id: int,
    move_tasks_to: int | None = Query(None, alias="moveTasksTo"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    DeleteColumnUseCase(db).execute(principal, column_id, move_tasks_to=move_tasks_to)
    return success("Column deleted successfully")
