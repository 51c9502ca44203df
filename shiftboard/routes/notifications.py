from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.principal import Principal
from ..auth.security import get_current_principal
from ..models.models import Notification
from ..services.notifications import RECIPIENT_TENANT, RECIPIENT_WORKER

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_dict(n: Notification) -> dict:
    payload = n.payload_json or {}
    return {
        "id": str(n.id),
        "channel": n.channel,
        "template_key": n.template_key,
        "subject": payload.get("subject"),
        "message": payload.get("message"),
        "data": payload.get("data", {}),
        "status": n.status,
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    channel: Optional[str] = Query(None, pattern="^(push|email)$"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Outbox records addressed to the caller, newest first."""
    recipient_type = RECIPIENT_WORKER if principal.is_worker else RECIPIENT_TENANT
    q = db.query(Notification).filter(
        Notification.recipient_type == recipient_type,
        Notification.recipient_id == principal.id,
    )
    if channel:
        q = q.filter(Notification.channel == channel)
    return [_notification_to_dict(n) for n in q.order_by(Notification.created_at.desc()).limit(limit).all()]
