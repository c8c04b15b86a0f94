"""
Supplier directory: case-insensitive lookup and race-safe creation by name.
"""
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement.core.errors import ConflictError, NotFoundError, ValidationError, parse_positive_id
from procurement.core.logging import get_logger, audit_logger
from procurement.db.models import Supplier, RfxResponse, PurchaseOrder

logger = get_logger(__name__)


def normalize_text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _find_by_name(db: Session, name: str) -> Optional[Supplier]:
    return db.query(Supplier).filter(
        func.lower(Supplier.name) == name.lower()
    ).first()


def get_supplier_by_id(db: Session, supplier_id) -> Optional[Supplier]:
    """Return the supplier, or ``None`` for unknown or malformed ids."""
    try:
        parsed_id = parse_positive_id(supplier_id)
    except ValidationError:
        return None
    return db.query(Supplier).filter(Supplier.id == parsed_id).first()


def find_or_create_supplier(db: Session, name) -> Supplier:
    """
    Look a supplier up by name (case-insensitive), inserting it on a miss.

    The insert runs in a savepoint: if a concurrent transaction created the
    same name first, the unique index rejects ours and the existing row is
    returned instead. The caller owns the surrounding transaction.
    """
    sanitized = normalize_text(name)
    if not sanitized:
        raise ValidationError("supplier name is required")

    existing = _find_by_name(db, sanitized)
    if existing:
        return existing

    try:
        with db.begin_nested():
            supplier = Supplier(name=sanitized)
            db.add(supplier)
        return supplier
    except IntegrityError:
        retry = _find_by_name(db, sanitized)
        if retry:
            logger.info(f"Supplier '{sanitized}' created concurrently, reusing id {retry.id}")
            return retry
        raise


def list_suppliers(db: Session) -> List[Supplier]:
    return db.query(Supplier).order_by(func.lower(Supplier.name), Supplier.id).all()


def create_supplier(
    db: Session,
    name,
    contact_email=None,
    contact_phone=None,
    actor_id: Optional[int] = None,
) -> Supplier:
    """Find-or-create a supplier and fill in any contact details given."""
    contact_email = normalize_text(contact_email) or None
    contact_phone = normalize_text(contact_phone) or None

    try:
        supplier = find_or_create_supplier(db, name)
        if contact_email or contact_phone:
            supplier.contact_email = contact_email or supplier.contact_email
            supplier.contact_phone = contact_phone or supplier.contact_phone
            supplier.updated_at = func.now()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(supplier)
    audit_logger.log(
        action="create_supplier",
        user_id=actor_id,
        entity_type="supplier",
        entity_id=supplier.id,
        details={"name": supplier.name},
    )
    return supplier


def update_supplier(db: Session, supplier_id, fields: dict, actor_id: Optional[int] = None) -> Supplier:
    """Partially update name/contact fields. Only keys present in ``fields`` are touched."""
    parsed_id = parse_positive_id(supplier_id, "supplier id")
    supplier = get_supplier_by_id(db, parsed_id)
    if not supplier:
        raise NotFoundError("Supplier not found")

    changes = {}
    if "name" in fields:
        new_name = normalize_text(fields["name"])
        if not new_name:
            raise ValidationError("Supplier name is required")
        clash = _find_by_name(db, new_name)
        if clash and clash.id != supplier.id:
            raise ConflictError("A supplier with this name already exists")
        changes["name"] = new_name

    for key in ("contact_email", "contact_phone"):
        if key in fields:
            changes[key] = normalize_text(fields[key]) or None

    if not changes:
        return supplier

    for key, value in changes.items():
        setattr(supplier, key, value)
    supplier.updated_at = func.now()

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A supplier with this name already exists")

    db.refresh(supplier)
    audit_logger.log(
        action="update_supplier",
        user_id=actor_id,
        entity_type="supplier",
        entity_id=supplier.id,
        details=changes,
    )
    return supplier


def delete_supplier(db: Session, supplier_id, actor_id: Optional[int] = None) -> None:
    """Delete a supplier that no response or purchase order references."""
    parsed_id = parse_positive_id(supplier_id, "supplier id")
    supplier = get_supplier_by_id(db, parsed_id)
    if not supplier:
        raise NotFoundError("Supplier not found")

    referenced = (
        db.query(RfxResponse.id).filter(RfxResponse.supplier_id == parsed_id).first()
        or db.query(PurchaseOrder.id).filter(PurchaseOrder.supplier_id == parsed_id).first()
    )
    if referenced:
        raise ConflictError("Supplier is linked to other records and cannot be deleted")

    name = supplier.name
    try:
        db.delete(supplier)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Supplier is linked to other records and cannot be deleted")

    audit_logger.log(
        action="delete_supplier",
        user_id=actor_id,
        entity_type="supplier",
        entity_id=parsed_id,
        details={"name": name},
    )
