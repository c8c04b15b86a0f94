"""
Award an RFx response and issue the purchase order.

Everything happens in one transaction. The response/event row and the
request row are locked (SELECT ... FOR UPDATE) so two awards against the
same request serialize; the second one finds the purchase order created by
the first and is rejected. Any failure rolls the whole award back.
"""
import random
import time
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement.core.config import settings
from procurement.core.errors import (
    ConflictError, NotFoundError, ValidationError, parse_positive_id,
)
from procurement.core.logging import get_logger, audit_logger
from procurement.db.models import (
    PurchaseOrder, PurchaseOrderStatus, PurchaseRequest, RequestLog,
    RfxEvent, RfxResponse, RfxResponseStatus, RfxStatus, SourcingStatus, Supplier,
)
from procurement.services.rfx_events import as_utc, validate_event_transition
from procurement.services.suppliers import normalize_text

logger = get_logger(__name__)


def generate_po_number(prefix: Optional[str] = None) -> str:
    """``PO-<epoch millis>-<5 digit random>``; uniqueness is enforced by the database."""
    prefix = prefix or settings.PO_NUMBER_PREFIX
    return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 99999):05d}"


def serialize_purchase_order(po: PurchaseOrder, supplier_name: Optional[str] = None) -> dict:
    return {
        "id": po.id,
        "request_id": po.request_id,
        "rfx_id": po.rfx_id,
        "rfx_response_id": po.rfx_response_id,
        "supplier_id": po.supplier_id,
        "supplier_name": supplier_name,
        "po_number": po.po_number,
        "status": po.status,
        "currency": po.currency,
        "total_amount": po.total_amount,
        "notes": po.notes,
        "created_by": po.created_by,
        "issued_at": as_utc(po.issued_at),
        "created_at": as_utc(po.created_at),
        "updated_at": as_utc(po.updated_at),
    }


def serialize_request(request: PurchaseRequest) -> dict:
    return {
        "id": request.id,
        "title": request.title,
        "status": request.status,
        "awarded_supplier_id": request.awarded_supplier_id,
        "awarded_rfx_id": request.awarded_rfx_id,
        "awarded_rfx_response_id": request.awarded_rfx_response_id,
        "purchase_order_id": request.purchase_order_id,
        "purchase_order_number": request.purchase_order_number,
        "sourcing_status": request.sourcing_status,
        "awarded_at": as_utc(request.awarded_at),
        "po_issued_at": as_utc(request.po_issued_at),
        "updated_at": as_utc(request.updated_at),
    }


def _is_po_number_collision(error: IntegrityError) -> bool:
    return "po_number" in str(error.orig).lower()


def _insert_purchase_order(db: Session, values: dict, po_number: Optional[str]) -> PurchaseOrder:
    """
    Insert the PO inside a savepoint. Generated numbers are retried on a
    collision; a caller-supplied number that collides is a conflict.
    """
    attempts = 1 if po_number else settings.PO_NUMBER_MAX_ATTEMPTS

    for attempt in range(1, attempts + 1):
        number = po_number or generate_po_number()
        try:
            with db.begin_nested():
                po = PurchaseOrder(po_number=number, **values)
                db.add(po)
            return po
        except IntegrityError as e:
            if not _is_po_number_collision(e):
                raise
            if po_number:
                raise ConflictError(f"Purchase order number {po_number} already exists")
            logger.warning(f"Generated PO number {number} collided (attempt {attempt}/{attempts})")

    raise ConflictError("Could not generate a unique purchase order number, please retry")


def award_response(
    db: Session,
    rfx_id,
    response_id,
    po_number=None,
    notes=None,
    actor_id: Optional[int] = None,
) -> dict:
    """
    Award ``response_id`` (which must belong to ``rfx_id``) and issue its PO.

    Returns ``{"purchase_order", "awarded_response_id", "request"}``.
    """
    parsed_rfx_id = parse_positive_id(rfx_id, "RFX id")
    parsed_response_id = parse_positive_id(response_id, "response id")
    po_number = normalize_text(po_number) or None
    notes = normalize_text(notes) or None

    try:
        row = (
            db.query(RfxResponse, RfxEvent)
            .join(RfxEvent, RfxEvent.id == RfxResponse.rfx_id)
            .filter(RfxResponse.id == parsed_response_id, RfxResponse.rfx_id == parsed_rfx_id)
            .with_for_update()
            .first()
        )
        if not row:
            raise NotFoundError("RFX response not found for this event")
        response, event = row

        request_id = response.request_id or event.request_id
        if not request_id:
            raise ValidationError("This RFX response is not linked to a purchase request")

        if (event.status or "").lower() == RfxStatus.CANCELLED.value:
            raise ValidationError("Cannot award a cancelled RFX event")

        request = (
            db.query(PurchaseRequest)
            .filter(PurchaseRequest.id == request_id)
            .with_for_update()
            .first()
        )
        if not request:
            raise NotFoundError("Linked purchase request not found")

        existing_po = db.query(PurchaseOrder).filter(PurchaseOrder.request_id == request_id).first()
        if existing_po:
            raise ValidationError(
                f"A purchase order ({existing_po.po_number}) already exists for this request"
            )

        validate_event_transition(event.status, RfxStatus.AWARDED, via_award=True)

        po = _insert_purchase_order(
            db,
            {
                "request_id": request_id,
                "rfx_id": parsed_rfx_id,
                "rfx_response_id": parsed_response_id,
                "supplier_id": response.supplier_id,
                "status": PurchaseOrderStatus.ISSUED.value,
                "currency": settings.DEFAULT_CURRENCY,
                "total_amount": response.bid_amount,
                "notes": notes,
                "created_by": actor_id,
            },
            po_number,
        )

        db.query(RfxResponse).filter(RfxResponse.rfx_id == parsed_rfx_id).update(
            {
                RfxResponse.status: case(
                    (RfxResponse.id == parsed_response_id, RfxResponseStatus.AWARDED.value),
                    else_=RfxResponseStatus.CLOSED.value,
                )
            },
            synchronize_session=False,
        )

        db.query(RfxEvent).filter(RfxEvent.id == parsed_rfx_id).update(
            {
                RfxEvent.status: RfxStatus.AWARDED.value,
                RfxEvent.request_id: func.coalesce(RfxEvent.request_id, request_id),
                RfxEvent.updated_at: func.now(),
            },
            synchronize_session=False,
        )

        db.query(PurchaseRequest).filter(PurchaseRequest.id == request_id).update(
            {
                PurchaseRequest.awarded_supplier_id: response.supplier_id,
                PurchaseRequest.awarded_rfx_id: parsed_rfx_id,
                PurchaseRequest.awarded_rfx_response_id: parsed_response_id,
                PurchaseRequest.purchase_order_id: po.id,
                PurchaseRequest.purchase_order_number: po.po_number,
                PurchaseRequest.sourcing_status: SourcingStatus.PO_ISSUED.value,
                PurchaseRequest.awarded_at: func.coalesce(PurchaseRequest.awarded_at, func.now()),
                PurchaseRequest.po_issued_at: func.coalesce(PurchaseRequest.po_issued_at, func.now()),
                PurchaseRequest.updated_at: func.now(),
            },
            synchronize_session=False,
        )

        db.add(RequestLog(
            request_id=request_id,
            action="RFX Award",
            actor_id=actor_id,
            comments=f"Awarded RFX response #{parsed_response_id}; issued PO {po.po_number}",
        ))

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    db.refresh(request)
    supplier_name = None
    if po.supplier_id:
        supplier_name = db.query(Supplier.name).filter(Supplier.id == po.supplier_id).scalar()

    audit_logger.log(
        action="award_rfx_response",
        user_id=actor_id,
        entity_type="rfx_event",
        entity_id=parsed_rfx_id,
        details={
            "response_id": parsed_response_id,
            "request_id": request_id,
            "po_number": po.po_number,
            "total_amount": po.total_amount,
        },
    )

    return {
        "purchase_order": serialize_purchase_order(po, supplier_name),
        "awarded_response_id": parsed_response_id,
        "request": serialize_request(request),
    }
