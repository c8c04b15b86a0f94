"""
RFx response intake: supplier bids against open events.
"""
import math
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from procurement.core.errors import NotFoundError, ValidationError, parse_positive_id
from procurement.core.logging import get_logger, audit_logger
from procurement.db.models import RfxEvent, RfxResponse, RfxStatus, Supplier
from procurement.services.rfx_events import as_utc
from procurement.services.suppliers import find_or_create_supplier, normalize_text

logger = get_logger(__name__)

CLOSED_FOR_RESPONSES = {RfxStatus.CLOSED.value, RfxStatus.CANCELLED.value}


def parse_bid_amount(value) -> Optional[float]:
    """
    Parse an optional bid amount. Non-numeric values are rejected; negative
    amounts are accepted as-is.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError("Bid amount must be a number")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Bid amount must be a number")
    if math.isnan(amount) or math.isinf(amount):
        raise ValidationError("Bid amount must be a number")
    return amount


def serialize_response(response: RfxResponse, supplier_name: Optional[str] = None) -> dict:
    return {
        "id": response.id,
        "rfx_id": response.rfx_id,
        "request_id": response.request_id,
        "supplier_id": response.supplier_id,
        "supplier_name": supplier_name,
        "submitted_by": response.submitted_by,
        "bid_amount": response.bid_amount,
        "notes": response.notes,
        "response_data": response.response_data,
        "status": response.status,
        "created_at": as_utc(response.created_at),
    }


def submit_response(
    db: Session,
    rfx_id,
    supplier_name,
    bid_amount=None,
    notes=None,
    response_data=None,
    submitted_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Record a bid; the supplier is resolved or created by name."""
    parsed_id = parse_positive_id(rfx_id, "RFX id")
    supplier_name = normalize_text(supplier_name)
    if not supplier_name:
        raise ValidationError("Supplier name is required")
    amount = parse_bid_amount(bid_amount)

    event = db.query(RfxEvent).filter(RfxEvent.id == parsed_id).first()
    if not event:
        raise NotFoundError("RFX event not found")

    if (event.status or "").lower() in CLOSED_FOR_RESPONSES:
        raise ValidationError("This RFX event is no longer accepting responses")

    now = now or datetime.now(timezone.utc)
    due_date = as_utc(event.due_date)
    if due_date is not None and due_date < now:
        raise ValidationError("The due date for this RFX has passed")

    try:
        supplier = find_or_create_supplier(db, supplier_name)
        response = RfxResponse(
            rfx_id=parsed_id,
            request_id=event.request_id,
            supplier_id=supplier.id,
            submitted_by=submitted_by,
            bid_amount=amount,
            notes=normalize_text(notes) or None,
            response_data=response_data,
        )
        db.add(response)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(response)
    audit_logger.log(
        action="submit_rfx_response",
        user_id=submitted_by,
        entity_type="rfx_response",
        entity_id=response.id,
        details={"rfx_id": parsed_id, "supplier": supplier.name, "bid_amount": amount},
    )
    return serialize_response(response, supplier.name)


def list_responses(db: Session, rfx_id) -> List[dict]:
    """All responses for an event, newest first, with supplier names."""
    parsed_id = parse_positive_id(rfx_id, "RFX id")
    rows = (
        db.query(RfxResponse, Supplier.name)
        .outerjoin(Supplier, Supplier.id == RfxResponse.supplier_id)
        .filter(RfxResponse.rfx_id == parsed_id)
        .order_by(desc(RfxResponse.created_at), desc(RfxResponse.id))
        .all()
    )
    return [serialize_response(response, name) for response, name in rows]
