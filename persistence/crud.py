from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import SideEffectFailure


def record_failure(db: Session, *, action: str, error: BaseException, booking_id: Optional[str] = None,
                   attempted_status: Optional[str] = None, gateway_order_id: Optional[str] = None,
                   gateway_payment_id: Optional[str] = None, context: Optional[dict] = None) -> SideEffectFailure:
    row = SideEffectFailure(
        action=action,
        booking_id=booking_id,
        attempted_status=attempted_status,
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        error_type=type(error).__name__,
        error_message=str(error),
        context=context or {},
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_unresolved(db: Session, booking_id: Optional[str] = None) -> List[SideEffectFailure]:
    query = db.query(SideEffectFailure).filter(SideEffectFailure.resolved.is_(False))
    if booking_id:
        query = query.filter(SideEffectFailure.booking_id == booking_id)
    return query.order_by(SideEffectFailure.id).all()


def mark_resolved(db: Session, failure_id: int) -> bool:
    row = db.get(SideEffectFailure, failure_id)
    if not row:
        return False
    row.resolved = True
    row.resolved_at = datetime.now(timezone.utc)
    db.add(row)
    db.commit()
    return True
