"""
Suppliers API routes.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from procurement.db.session import get_db
from procurement.core.rbac import get_current_user_context, require_contracts_manage
from procurement.services import suppliers as supplier_directory

router = APIRouter(prefix="/api/suppliers", tags=["Suppliers"])


# ============= SCHEMAS =============

class SupplierCreate(BaseModel):
    name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class SupplierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============= ROUTES =============

@router.get("", response_model=List[SupplierResponse])
async def list_suppliers(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return supplier_directory.list_suppliers(db)


@router.post("", response_model=SupplierResponse, status_code=status.HTTP_201_CREATED)
async def create_supplier(
    supplier_data: SupplierCreate,
    user_context: dict = Depends(require_contracts_manage),
    db: Session = Depends(get_db)
):
    """Create a supplier, or return the existing one with the same name."""
    return supplier_directory.create_supplier(
        db,
        supplier_data.name,
        contact_email=supplier_data.contact_email,
        contact_phone=supplier_data.contact_phone,
        actor_id=user_context["user_id"],
    )


@router.patch("/{supplier_id}", response_model=SupplierResponse)
async def update_supplier(
    supplier_id: int,
    supplier_data: SupplierUpdate,
    user_context: dict = Depends(require_contracts_manage),
    db: Session = Depends(get_db)
):
    """Update only the fields present in the request body."""
    return supplier_directory.update_supplier(
        db,
        supplier_id,
        supplier_data.model_dump(exclude_unset=True),
        actor_id=user_context["user_id"],
    )


@router.delete("/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_supplier(
    supplier_id: int,
    user_context: dict = Depends(require_contracts_manage),
    db: Session = Depends(get_db)
):
    supplier_directory.delete_supplier(db, supplier_id, actor_id=user_context["user_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)
