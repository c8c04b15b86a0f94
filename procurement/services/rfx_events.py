"""
RFx event registry: creation, listing with response aggregates, and the
status lifecycle.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from procurement.core.errors import NotFoundError, ValidationError, parse_positive_id
from procurement.core.logging import get_logger, audit_logger
from procurement.db.models import RfxEvent, RfxResponse, RfxStatus, RfxType, PurchaseRequest
from procurement.services.suppliers import normalize_text

logger = get_logger(__name__)


# Manual status changes. ``awarded`` is only entered through the award
# operation; ``awarded`` and ``cancelled`` are terminal.
EVENT_TRANSITIONS = {
    RfxStatus.DRAFT: {RfxStatus.OPEN, RfxStatus.CANCELLED},
    RfxStatus.OPEN: {RfxStatus.DRAFT, RfxStatus.CLOSED, RfxStatus.CANCELLED},
    RfxStatus.CLOSED: {RfxStatus.OPEN, RfxStatus.CANCELLED},
    RfxStatus.AWARDED: set(),
    RfxStatus.CANCELLED: set(),
}

AWARDABLE_STATUSES = {RfxStatus.DRAFT, RfxStatus.OPEN, RfxStatus.CLOSED}


def parse_event_status(value) -> Optional[RfxStatus]:
    """Map free text to an RfxStatus, ``None`` when it is not a known status."""
    try:
        return RfxStatus(normalize_text(value).lower())
    except ValueError:
        return None


def validate_event_transition(current, target: RfxStatus, via_award: bool = False) -> None:
    """Raise ValidationError unless ``current -> target`` is a legal event transition."""
    current_status = parse_event_status(current)
    if current_status is None:
        raise ValidationError(f"RFX event has an unknown status '{current}'")

    if via_award:
        if target != RfxStatus.AWARDED:
            raise ValidationError("The award operation can only mark an event as awarded")
        if current_status == RfxStatus.CANCELLED:
            raise ValidationError("Cannot award a cancelled RFX event")
        if current_status not in AWARDABLE_STATUSES:
            raise ValidationError(f"Cannot award an RFX event that is {current_status.value}")
        return

    if target == current_status:
        return
    if target == RfxStatus.AWARDED:
        raise ValidationError("Use the award operation to award an RFX event")
    if target not in EVENT_TRANSITIONS[current_status]:
        raise ValidationError(
            f"Cannot change RFX status from {current_status.value} to {target.value}"
        )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values (e.g. read back from SQLite) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_due_date(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    raw = normalize_text(value)
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid due date")
    return as_utc(parsed)


def serialize_event(event: RfxEvent, response_count: int = 0, last_submitted_at=None) -> dict:
    return {
        "id": event.id,
        "title": event.title,
        "rfx_type": event.rfx_type,
        "description": event.description,
        "request_id": event.request_id,
        "due_date": as_utc(event.due_date),
        "status": event.status,
        "created_by": event.created_by,
        "created_at": as_utc(event.created_at),
        "updated_at": as_utc(event.updated_at),
        "response_count": int(response_count or 0),
        "last_submitted_at": as_utc(last_submitted_at),
    }


def _events_with_aggregates(db: Session):
    stats = db.query(
        RfxResponse.rfx_id.label("rfx_id"),
        func.count(RfxResponse.id).label("response_count"),
        func.max(RfxResponse.created_at).label("last_submitted_at"),
    ).group_by(RfxResponse.rfx_id).subquery()

    return db.query(
        RfxEvent,
        func.coalesce(stats.c.response_count, 0),
        stats.c.last_submitted_at,
    ).outerjoin(stats, stats.c.rfx_id == RfxEvent.id)


def list_events(db: Session, status_filter=None) -> List[dict]:
    """
    Events newest first, with response counts.

    An unrecognized status filter is ignored and the unfiltered list returned.
    """
    query = _events_with_aggregates(db)

    status = parse_event_status(status_filter) if status_filter else None
    if status is not None:
        query = query.filter(RfxEvent.status == status.value)

    rows = query.order_by(desc(RfxEvent.created_at), desc(RfxEvent.id)).all()
    return [serialize_event(event, count, last) for event, count, last in rows]


def get_event(db: Session, rfx_id) -> dict:
    parsed_id = parse_positive_id(rfx_id, "RFX id")
    row = _events_with_aggregates(db).filter(RfxEvent.id == parsed_id).first()
    if not row:
        raise NotFoundError("RFX event not found")
    event, count, last = row
    return serialize_event(event, count, last)


def create_event(
    db: Session,
    title,
    rfx_type,
    description=None,
    request_id=None,
    due_date=None,
    created_by: Optional[int] = None,
) -> dict:
    """Create an event in ``open`` status."""
    title = normalize_text(title)
    if not title:
        raise ValidationError("Title is required")

    try:
        parsed_type = RfxType(normalize_text(rfx_type).upper())
    except ValueError:
        raise ValidationError("Invalid RFX type. Use RFQ, RFP, RFI, ITT, or RFT")

    parsed_due_date = parse_due_date(due_date)

    linked_request_id = None
    if request_id not in (None, ""):
        linked_request_id = parse_positive_id(request_id, "request id")
        exists = db.query(PurchaseRequest.id).filter(PurchaseRequest.id == linked_request_id).first()
        if not exists:
            raise NotFoundError("Linked request not found")

    event = RfxEvent(
        title=title,
        rfx_type=parsed_type.value,
        description=normalize_text(description) or None,
        request_id=linked_request_id,
        due_date=parsed_due_date,
        status=RfxStatus.OPEN.value,
        created_by=created_by,
    )
    try:
        db.add(event)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(event)

    audit_logger.log(
        action="create_rfx_event",
        user_id=created_by,
        entity_type="rfx_event",
        entity_id=event.id,
        details={"title": title, "rfx_type": event.rfx_type, "request_id": linked_request_id},
    )
    return serialize_event(event)


def update_event_status(db: Session, rfx_id, status, actor_id: Optional[int] = None) -> dict:
    """Change an event's status through the transition table."""
    parsed_id = parse_positive_id(rfx_id, "RFX id")
    target = parse_event_status(status)
    if target is None:
        raise ValidationError("Invalid status")

    event = db.query(RfxEvent).filter(RfxEvent.id == parsed_id).with_for_update().first()
    if not event:
        db.rollback()
        raise NotFoundError("RFX event not found")

    previous = event.status
    try:
        validate_event_transition(previous, target)
        event.status = target.value
        event.updated_at = func.now()
        db.commit()
    except Exception:
        db.rollback()
        raise

    audit_logger.log(
        action="update_rfx_status",
        user_id=actor_id,
        entity_type="rfx_event",
        entity_id=parsed_id,
        details={"from": previous, "to": target.value},
    )
    return get_event(db, parsed_id)
