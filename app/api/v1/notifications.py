"""
In-app notifications API
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_principal
from app.api.envelope import RequestModel, success
from app.application.notifications import MarkNotificationsReadUseCase, NotificationReadService
from app.domain.permissions import Principal


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class MarkReadRequest(RequestModel):
    notification_ids: list[int] = []


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    data = NotificationReadService(db).list_for_user(principal.id, unread_only=unread_only, limit=limit)
    return success("Notifications retrieved", data)


@router.post("/read")
def mark_read(req: MarkReadRequest, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    updated = MarkNotificationsReadUseCase(db).execute(principal.id, req.notification_ids)
    return success("Notifications marked as read", {"updated": updated})


@router.post("/read-all")
def mark_all_read(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    updated = MarkNotificationsReadUseCase(db).execute(principal.id, None)
    return success("All notifications marked as read", {"updated": updated})
