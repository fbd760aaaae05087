from typing import Any, Callable, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from persistence import crud
from persistence.models import SideEffectFailure

logger = structlog.get_logger(component="side_effects")


class SideEffectRunner:
    """
    Runs secondary booking updates (compensations after a failure, bookkeeping
    after a success) without letting them change the primary outcome.

    A failed call is logged as a structured `side_effect_failed` event and
    recorded in the side_effect_failures table so it can be queried and
    reconciled later. `run` never raises the underlying error.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def run(self, action: str, fn: Callable[[], Any], *, booking_id: Optional[str] = None,
            attempted_status: Optional[str] = None, gateway_order_id: Optional[str] = None,
            gateway_payment_id: Optional[str] = None, **context) -> bool:
        try:
            fn()
        except Exception as exc:
            logger.error(
                "side_effect_failed",
                action=action,
                booking_id=booking_id,
                attempted_status=attempted_status,
                order_id=gateway_order_id,
                payment_id=gateway_payment_id,
                error_type=type(exc).__name__,
                error=str(exc),
                **context,
            )
            self._record(action, exc, booking_id, attempted_status, gateway_order_id, gateway_payment_id, context)
            return False
        logger.info("side_effect_succeeded", action=action, booking_id=booking_id, attempted_status=attempted_status)
        return True

    def list_unresolved(self, booking_id: Optional[str] = None) -> List[SideEffectFailure]:
        if self.session_factory is None:
            return []
        with self.session_factory() as db:
            return crud.list_unresolved(db, booking_id=booking_id)

    def mark_resolved(self, failure_id: int) -> bool:
        if self.session_factory is None:
            return False
        with self.session_factory() as db:
            return crud.mark_resolved(db, failure_id)

    def _record(self, action, exc, booking_id, attempted_status, order_id, payment_id, context):
        if self.session_factory is None:
            return
        try:
            with self.session_factory() as db:
                crud.record_failure(
                    db,
                    action=action,
                    error=exc,
                    booking_id=booking_id,
                    attempted_status=attempted_status,
                    gateway_order_id=order_id,
                    gateway_payment_id=payment_id,
                    context={k: str(v) for k, v in context.items()},
                )
        except SQLAlchemyError as ledger_exc:
            logger.error("side_effect_ledger_write_failed", action=action, booking_id=booking_id,
                         error=str(ledger_exc))
