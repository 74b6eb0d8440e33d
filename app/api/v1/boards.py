"""
Boards API (boards and the ordered column list of a board)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_principal
from app.api.envelope import RequestModel, success
from app.application.boards import BoardReadService, CreateBoardUseCase, DeleteBoardUseCase, UpdateBoardUseCase
from app.application.columns import ColumnReadService, CreateColumnUseCase, ReorderColumnsUseCase
from app.domain.permissions import Principal


router = APIRouter(prefix="/api/project-management", tags=["boards"])


class BoardCreateRequest(RequestModel):
    project_id: int
    title: str = ""
    description: str | None = None
    visibility: str = "team"
    background: str | None = None
    member_ids: list[int] | None = None


class BoardUpdateRequest(RequestModel):
    title: str | None = None
    description: str | None = None
    visibility: str | None = None
    background: str | None = None
    is_archived: bool | None = None
    member_ids: list[int] | None = None
    admin_ids: list[int] | None = None


class ColumnCreateRequest(RequestModel):
    title: str = ""
    color: str | None = None
    wip_limit: int | None = None
    position: int | None = None
    status: str | None = None


class ColumnReorderRequest(RequestModel):
    column_order: list[int] = []


@router.get("/boards")
def list_boards(
    project_id: int | None = None,
    archived: bool = False,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return success("Boards retrieved", BoardReadService(db).list_boards(principal, project_id=project_id, archived=archived))


@router.post("/boards")
def create_board(req: BoardCreateRequest, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    board_id = CreateBoardUseCase(db).execute(principal, **req.model_dump())
    return success("Board created successfully", BoardReadService(db).get_board(principal, board_id), status_code=201)


@router.get("/boards/{board_id}")
def get_board(board_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Board retrieved", BoardReadService(db).get_board(principal, board_id))


@router.put("/boards/{board_id}")
def update_board(
    board_id: int,
    req: BoardUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    UpdateBoardUseCase(db).execute(principal, board_id, **req.model_dump(exclude_unset=True))
    return success("Board updated successfully", BoardReadService(db).get_board(principal, board_id))


@router.delete("/boards/{board_id}")
def delete_board(
    board_id: int,
    permanent: bool = False,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    DeleteBoardUseCase(db).execute(principal, board_id, permanent=permanent)
    return success("Board deleted permanently" if permanent else "Board archived successfully")


# ── Columns of a board ──

@router.get("/boards/{board_id}/columns")
def list_columns(board_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return success("Columns retrieved", ColumnReadService(db).list_columns(principal, board_id))


@router.post("/boards/{board_id}/columns")
def create_column(
    board_id: int,
    req: ColumnCreateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    column_id = CreateColumnUseCase(db).execute(principal, board_id, **req.model_dump())
    return success("Column created successfully", ColumnReadService(db).get_column(principal, column_id), status_code=201)


@router.put("/boards/{board_id}/columns")
def reorder_columns(
    board_id: int,
    req: ColumnReorderRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    order = ReorderColumnsUseCase(db).execute(principal, board_id, req.column_order)
    return success("Columns reordered successfully", {"column_order": order})
