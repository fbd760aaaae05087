"""
Reconciliation sweep for bookings left `pending` after their gateway order
was created, e.g. when the process died before verification was reported.

For each pending booking that carries a gateway order id:
 - order paid                        -> booking completed (captured payment id attached)
 - only failed payments on the order -> booking failed
 - anything else                     -> left pending

Run with `villa-reconcile` (add --dry-run to only report).
"""

import argparse
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field

from booking_schemas import BookingStatus
from config import Settings
from errors import GatewayError, StoreError
from logging_setup import configure_logging
from payments.gateway import RazorpayGateway
from persistence.db import build_engine, init_db, make_session_factory
from persistence.notion_store import NotionBookingStore
from txn_manager import SideEffectRunner

logger = structlog.get_logger(component="reconcile")


class SweepReport(BaseModel):
    checked: int = 0
    completed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    untouched: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


def _decide(order_status: str, payments: List[dict]):
    captured = [p for p in payments if p.get("status") == "captured"]
    if order_status == "paid" or captured:
        return BookingStatus.COMPLETED, (captured[0]["id"] if captured else None)
    if payments and all(p.get("status") == "failed" for p in payments):
        return BookingStatus.FAILED, None
    return None, None


def sweep(store, gateway, side_effects, dry_run: bool = False) -> SweepReport:
    report = SweepReport()
    for booking in store.list_bookings(status=BookingStatus.PENDING):
        if not booking.gateway_order_id:
            continue
        report.checked += 1
        log = logger.bind(booking_id=booking.id, order_id=booking.gateway_order_id)
        try:
            order = gateway.fetch_order(booking.gateway_order_id)
            payments = gateway.fetch_order_payments(booking.gateway_order_id)
        except GatewayError as exc:
            log.error("reconcile_lookup_failed", code=exc.code, error=exc.description)
            report.errors.append(booking.id)
            continue

        target, payment_id = _decide(order.status, payments)
        if target is None:
            report.untouched.append(booking.id)
            continue

        log.info("reconcile_status_change", status=target.value, order_status=order.status, dry_run=dry_run)
        if dry_run:
            ok = True
        else:
            ok = side_effects.run(
                "reconcile",
                lambda: store.update_status(booking.id, target, gateway_order_id=booking.gateway_order_id,
                                            gateway_payment_id=payment_id),
                booking_id=booking.id,
                attempted_status=target.value,
                gateway_order_id=booking.gateway_order_id,
                gateway_payment_id=payment_id,
            )
        if not ok:
            report.errors.append(booking.id)
        elif target is BookingStatus.COMPLETED:
            report.completed.append(booking.id)
        else:
            report.failed.append(booking.id)
    return report


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Reconcile pending villa bookings with Razorpay")
    parser.add_argument("--dry-run", action="store_true", help="report changes without writing them")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.is_production)
    engine = build_engine(settings.database_url)
    init_db(engine)
    side_effects = SideEffectRunner(make_session_factory(engine))
    gateway = RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret, environment=settings.environment)
    store = NotionBookingStore(settings.notion_api_key, settings.notion_database_id)

    try:
        report = sweep(store, gateway, side_effects, dry_run=args.dry_run)
    except StoreError as exc:
        print(f"Could not list pending bookings: {exc.message}")
        return 1

    print("=== Reconciliation ===")
    print(report.model_dump_json(indent=2))

    unresolved = side_effects.list_unresolved()
    print(f"\n=== Unresolved side-effect failures: {len(unresolved)} ===")
    for row in unresolved:
        print(f"- #{row.id} {row.created_at:%Y-%m-%d %H:%M} {row.action}: booking={row.booking_id} "
              f"status={row.attempted_status} order={row.gateway_order_id} error={row.error_message}")
    return 0 if not report.errors else 2


if __name__ == "__main__":
    raise SystemExit(main())
