"""
Read access to issued purchase orders.
"""
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from procurement.core.errors import NotFoundError, parse_positive_id
from procurement.db.models import PurchaseOrder, Supplier
from procurement.services.award import serialize_purchase_order


def _with_supplier(db: Session):
    return db.query(PurchaseOrder, Supplier.name).outerjoin(
        Supplier, Supplier.id == PurchaseOrder.supplier_id
    )


def list_purchase_orders(db: Session, supplier_id: Optional[int] = None) -> List[dict]:
    query = _with_supplier(db)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == parse_positive_id(supplier_id, "supplier id"))
    rows = query.order_by(desc(PurchaseOrder.created_at), desc(PurchaseOrder.id)).all()
    return [serialize_purchase_order(po, name) for po, name in rows]


def get_purchase_order(db: Session, purchase_order_id) -> dict:
    parsed_id = parse_positive_id(purchase_order_id, "purchase order id")
    row = _with_supplier(db).filter(PurchaseOrder.id == parsed_id).first()
    if not row:
        raise NotFoundError("Purchase order not found")
    po, name = row
    return serialize_purchase_order(po, name)
