from datetime import date
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import httpx
import structlog
from notion_client import APIResponseError, Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError
from pydantic import ValidationError as PydanticValidationError

from booking_schemas import (
    Ack,
    BookingFields,
    BookingRecord,
    BookingStatus,
    RecordHandle,
    build_booking_fields,
)
from errors import ConfigurationError, StoreError

# Notion database column names
VILLA = "Villa"
CHECK_IN = "Check In"
CHECK_OUT = "Check Out"
CUSTOMER_NAME = "Customer Name"
EMAIL = "Email"
PHONE = "Phone"
GUESTS = "Guests"
EXTRA_MATTRESSES = "Extra Mattresses"
AMOUNT = "Amount"
STATUS = "Status"
ORDER_ID = "Razorpay Order ID"
PAYMENT_ID = "Razorpay Payment ID"

_STORE_ERRORS = (APIResponseError, HTTPResponseError, RequestTimeoutError, httpx.HTTPError)

logger = structlog.get_logger(component="notion_store")


def _title(text: str) -> Dict[str, Any]:
    return {"title": [{"text": {"content": text}}]}


def _rich_text(text: Optional[str]) -> Dict[str, Any]:
    return {"rich_text": [{"text": {"content": text}}] if text else []}


def _status_select(status: BookingStatus) -> Dict[str, Any]:
    return {"select": {"name": status.value.capitalize()}}


def _plain_text(prop: Optional[Mapping[str, Any]]) -> str:
    if not prop:
        return ""
    parts = prop.get("title") or prop.get("rich_text") or []
    return "".join(p.get("plain_text") or p.get("text", {}).get("content", "") for p in parts)


def _date_start(prop: Optional[Mapping[str, Any]]) -> Optional[date]:
    start = ((prop or {}).get("date") or {}).get("start")
    return date.fromisoformat(start[:10]) if start else None


def _to_store_error(exc: Exception, action: str) -> StoreError:
    code = getattr(exc, "code", None)
    status = getattr(exc, "status", None)
    if isinstance(exc, httpx.HTTPError) and not isinstance(exc, httpx.HTTPStatusError):
        code = code or "network_error"
    return StoreError(f"Notion {action} failed: {exc}", code=code, status=status)


def booking_properties(fields: BookingFields, status: BookingStatus = BookingStatus.PENDING) -> Dict[str, Any]:
    return {
        VILLA: _title(fields.villa_name),
        CHECK_IN: {"date": {"start": fields.check_in.isoformat()}},
        CHECK_OUT: {"date": {"start": fields.check_out.isoformat()}},
        CUSTOMER_NAME: _rich_text(fields.customer_name),
        EMAIL: {"email": fields.customer_email},
        PHONE: {"phone_number": fields.customer_phone},
        GUESTS: {"number": fields.guests},
        EXTRA_MATTRESSES: {"number": fields.extra_mattresses},
        AMOUNT: {"number": fields.amount / 100},    # display in rupees
        STATUS: _status_select(status),
        ORDER_ID: _rich_text(None),
        PAYMENT_ID: _rich_text(None),
    }


def page_to_record(page: Mapping[str, Any]) -> BookingRecord:
    props = page.get("properties", {})
    status_name = (((props.get(STATUS) or {}).get("select")) or {}).get("name") or "pending"
    amount = (props.get(AMOUNT) or {}).get("number") or 0
    return BookingRecord(
        id=page["id"],
        url=page.get("url"),
        villa_name=_plain_text(props.get(VILLA)),
        check_in=_date_start(props.get(CHECK_IN)),
        check_out=_date_start(props.get(CHECK_OUT)),
        guests=(props.get(GUESTS) or {}).get("number") or 1,
        extra_mattresses=(props.get(EXTRA_MATTRESSES) or {}).get("number") or 0,
        customer_name=_plain_text(props.get(CUSTOMER_NAME)),
        customer_email=(props.get(EMAIL) or {}).get("email") or "",
        customer_phone=(props.get(PHONE) or {}).get("phone_number") or "",
        amount=int(round(amount * 100)),
        status=BookingStatus(status_name.lower()),
        gateway_order_id=_plain_text(props.get(ORDER_ID)) or None,
        gateway_payment_id=_plain_text(props.get(PAYMENT_ID)) or None,
    )


def _read_page(page: Mapping[str, Any]) -> BookingRecord:
    try:
        return page_to_record(page)
    except (PydanticValidationError, ValueError) as exc:
        logger.error("booking_page_unreadable", booking_id=page.get("id"), error=str(exc))
        raise StoreError(f"Notion page {page.get('id')} is not a readable booking: {exc}",
                         code="unreadable_page") from exc


class NotionBookingStore:
    """
    Notion database used as the booking record store, one page per booking.
    Pass `client` to inject a double; otherwise a notion_client.Client is built.
    """

    def __init__(self, api_key: str, database_id: str, client=None):
        missing = [name for name, value in (("NOTION_API_KEY", api_key), ("NOTION_DATABASE_ID", database_id)) if not value]
        if missing:
            raise ConfigurationError("Notion is not configured", missing=missing)
        self.database_id = database_id
        self._client = client or Client(auth=api_key)

    def create_booking(self, fields: Union[BookingFields, Mapping[str, Any]]) -> RecordHandle:
        """
        Create a pending booking page. A mapping is validated first (wire names,
        amount under "amount") and raises ValidationError listing every missing field.
        """
        if not isinstance(fields, BookingFields):
            fields = build_booking_fields(fields, fields.get("amount"))

        try:
            page = self._client.pages.create(
                parent={"database_id": self.database_id},
                properties=booking_properties(fields),
            )
        except _STORE_ERRORS as exc:
            error = _to_store_error(exc, "page create")
            logger.error("booking_create_failed", code=error.code, status=error.status, error=error.message)
            raise error from exc

        handle = RecordHandle(id=page["id"], url=page.get("url"))
        logger.info("booking_created", booking_id=handle.id, villa=fields.villa_name, amount=fields.amount)
        return handle

    def update_status(self, handle: Union[str, RecordHandle], status: Union[str, BookingStatus],
                      gateway_order_id: Optional[str] = None, gateway_payment_id: Optional[str] = None) -> Ack:
        """Overwrite the status (terminal or not) and attach gateway ids when given."""
        page_id = handle.id if isinstance(handle, RecordHandle) else handle
        status = BookingStatus(status)
        properties = {STATUS: _status_select(status)}
        if gateway_order_id:
            properties[ORDER_ID] = _rich_text(gateway_order_id)
        if gateway_payment_id:
            properties[PAYMENT_ID] = _rich_text(gateway_payment_id)

        try:
            self._client.pages.update(page_id=page_id, properties=properties)
        except _STORE_ERRORS as exc:
            error = _to_store_error(exc, "page update")
            logger.error("booking_update_failed", booking_id=page_id, status=status.value,
                         code=error.code, error=error.message)
            raise error from exc

        logger.info("booking_status_updated", booking_id=page_id, status=status.value,
                    order_id=gateway_order_id, payment_id=gateway_payment_id)
        return Ack(id=page_id, status=status)

    def get_booking(self, handle: Union[str, RecordHandle]) -> BookingRecord:
        page_id = handle.id if isinstance(handle, RecordHandle) else handle
        try:
            page = self._client.pages.retrieve(page_id=page_id)
        except _STORE_ERRORS as exc:
            raise _to_store_error(exc, "page retrieve") from exc
        return _read_page(page)

    def list_bookings(self, villa: Optional[str] = None,
                      status: Optional[BookingStatus] = None) -> List[BookingRecord]:
        conditions = []
        if villa:
            conditions.append({"property": VILLA, "title": {"equals": villa}})
        if status:
            conditions.append({"property": STATUS, "select": {"equals": BookingStatus(status).value.capitalize()}})
        records = []
        for page in self._query(conditions):
            try:
                records.append(page_to_record(page))
            except (PydanticValidationError, ValueError) as exc:
                logger.warning("booking_page_unreadable", booking_id=page.get("id"), error=str(exc))
        return records

    def find_by_gateway_order(self, order_id: str) -> Optional[BookingRecord]:
        pages = list(self._query([{"property": ORDER_ID, "rich_text": {"equals": order_id}}]))
        return _read_page(pages[0]) if pages else None

    def _query(self, conditions: List[Dict[str, Any]]) -> Iterator[Mapping[str, Any]]:
        kwargs: Dict[str, Any] = {"database_id": self.database_id}
        if len(conditions) == 1:
            kwargs["filter"] = conditions[0]
        elif conditions:
            kwargs["filter"] = {"and": conditions}

        while True:
            try:
                result = self._client.databases.query(**kwargs)
            except _STORE_ERRORS as exc:
                raise _to_store_error(exc, "database query") from exc
            yield from result.get("results", [])
            if not result.get("has_more"):
                break
            kwargs["start_cursor"] = result.get("next_cursor")
