"""
Purchase order API routes (read-only; POs are issued by the RFx award).
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from procurement.db.session import get_db
from procurement.core.rbac import require_rfx_manage
from procurement.api.rfx_portal import PurchaseOrderResponse
from procurement.services import purchase_orders

router = APIRouter(prefix="/api/purchase-orders", tags=["Purchase Orders"])


@router.get("", response_model=List[PurchaseOrderResponse])
async def list_purchase_orders(
    supplier_id: Optional[int] = Query(None, description="Filter by supplier"),
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    return purchase_orders.list_purchase_orders(db, supplier_id)


@router.get("/{purchase_order_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    purchase_order_id: int,
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    return purchase_orders.get_purchase_order(db, purchase_order_id)
