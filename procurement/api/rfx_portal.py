"""
RFx portal API routes - sourcing events, supplier responses, analysis and award.
"""
from typing import Any, List, Optional, Union
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from procurement.db.session import get_db
from procurement.core.errors import ForbiddenError, ValidationError, parse_positive_id
from procurement.core.rbac import (
    can_respond_to_rfx, get_current_user_context, get_optional_user_context, require_rfx_manage,
)
from procurement.services import rfx_events, rfx_responses
from procurement.services.award import award_response
from procurement.services.quotation_analyzer import analyze_quotations

router = APIRouter(prefix="/api/rfx-portal", tags=["RFx Portal"])


# ============= SCHEMAS =============

class RfxEventCreate(BaseModel):
    title: Optional[str] = None
    rfx_type: Optional[str] = None
    type: Optional[str] = None  # alias of rfx_type
    description: Optional[str] = None
    request_id: Optional[int] = None
    due_date: Optional[str] = None


class RfxStatusUpdate(BaseModel):
    status: Optional[str] = None


class RfxResponseCreate(BaseModel):
    supplier_name: Optional[str] = None
    bid_amount: Optional[Union[float, str]] = None
    notes: Optional[str] = None
    response_data: Optional[Any] = None
    details: Optional[Any] = None  # alias of response_data


class QuotationBatch(BaseModel):
    quotations: Optional[List[Any]] = None


class AwardDecision(BaseModel):
    response_id: Optional[Union[int, str]] = None
    po_number: Optional[str] = None
    notes: Optional[str] = None


class RfxEventResponse(BaseModel):
    id: int
    title: str
    rfx_type: str
    description: Optional[str] = None
    request_id: Optional[int] = None
    due_date: Optional[datetime] = None
    status: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    response_count: int = 0
    last_submitted_at: Optional[datetime] = None


class RfxBidResponse(BaseModel):
    id: int
    rfx_id: int
    request_id: Optional[int] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    submitted_by: Optional[int] = None
    bid_amount: Optional[float] = None
    notes: Optional[str] = None
    response_data: Optional[Any] = None
    status: str
    created_at: Optional[datetime] = None


class QuotationAnalysis(BaseModel):
    rfx_id: int
    quotations: List[dict]
    best_quotation: Optional[dict] = None


class PurchaseOrderResponse(BaseModel):
    id: int
    request_id: int
    rfx_id: Optional[int] = None
    rfx_response_id: Optional[int] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    po_number: str
    status: str
    currency: str
    total_amount: Optional[float] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    issued_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RequestAwardSnapshot(BaseModel):
    id: int
    title: Optional[str] = None
    status: Optional[str] = None
    awarded_supplier_id: Optional[int] = None
    awarded_rfx_id: Optional[int] = None
    awarded_rfx_response_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    purchase_order_number: Optional[str] = None
    sourcing_status: Optional[str] = None
    awarded_at: Optional[datetime] = None
    po_issued_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AwardResult(BaseModel):
    purchase_order: PurchaseOrderResponse
    awarded_response_id: int
    request: RequestAwardSnapshot


# ============= ROUTES =============

@router.get("", response_model=List[RfxEventResponse])
async def list_rfx_events(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """List RFx events, newest first. Unknown status filters are ignored."""
    return rfx_events.list_events(db, status_filter)


@router.post("", response_model=RfxEventResponse, status_code=status.HTTP_201_CREATED)
async def create_rfx_event(
    event_data: RfxEventCreate,
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    """Publish a new RFx event (opens immediately)."""
    return rfx_events.create_event(
        db,
        title=event_data.title,
        rfx_type=event_data.rfx_type or event_data.type,
        description=event_data.description,
        request_id=event_data.request_id,
        due_date=event_data.due_date,
        created_by=user_context["user_id"],
    )


@router.get("/{rfx_id}", response_model=RfxEventResponse)
async def get_rfx_event(
    rfx_id: int,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    return rfx_events.get_event(db, rfx_id)


@router.patch("/{rfx_id}/status", response_model=RfxEventResponse)
async def update_rfx_status(
    rfx_id: int,
    status_data: RfxStatusUpdate,
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    return rfx_events.update_event_status(
        db, rfx_id, status_data.status, actor_id=user_context["user_id"]
    )


@router.get("/{rfx_id}/responses", response_model=List[RfxBidResponse])
async def list_rfx_responses(
    rfx_id: int,
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    return rfx_responses.list_responses(db, rfx_id)


@router.post("/{rfx_id}/responses", response_model=RfxBidResponse, status_code=status.HTTP_201_CREATED)
async def submit_rfx_response(
    rfx_id: int,
    response_data: RfxResponseCreate,
    user_context: Optional[dict] = Depends(get_optional_user_context),
    db: Session = Depends(get_db)
):
    """
    Submit a bid. Anonymous suppliers may respond through the public portal;
    signed-in users need the respond or manage permission.
    """
    if user_context is not None and not can_respond_to_rfx(user_context):
        raise ForbiddenError("You are not authorized to submit responses")

    payload = response_data.response_data
    if payload is None:
        payload = response_data.details

    return rfx_responses.submit_response(
        db,
        rfx_id,
        supplier_name=response_data.supplier_name,
        bid_amount=response_data.bid_amount,
        notes=response_data.notes,
        response_data=payload,
        submitted_by=user_context["user_id"] if user_context else None,
    )


@router.post("/{rfx_id}/analyze", response_model=QuotationAnalysis)
async def analyze_rfx_quotations(
    rfx_id: int,
    batch: QuotationBatch,
    user_context: dict = Depends(require_rfx_manage),
):
    """Rank a batch of quotations by composite score. Nothing is persisted."""
    parsed_id = parse_positive_id(rfx_id, "RFX id")
    if not batch.quotations:
        raise ValidationError("quotations must be a non-empty array")

    result = analyze_quotations(batch.quotations)
    return {"rfx_id": parsed_id, **result}


@router.post("/{rfx_id}/award", response_model=AwardResult, status_code=status.HTTP_201_CREATED)
async def award_rfx_response(
    rfx_id: int,
    award_data: AwardDecision,
    user_context: dict = Depends(require_rfx_manage),
    db: Session = Depends(get_db)
):
    """Award a response and issue the purchase order for its request."""
    return award_response(
        db,
        rfx_id,
        award_data.response_id,
        po_number=award_data.po_number,
        notes=award_data.notes,
        actor_id=user_context["user_id"],
    )
