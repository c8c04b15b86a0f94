"""
SQLAlchemy ORM models for the sourcing portal.

``users`` and ``requests`` belong to the wider purchasing application; only
the columns the sourcing workflow reads or writes are mapped here.
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float,
    ForeignKey, JSON, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from procurement.db.session import Base


# ============= ENUMS =============
# Stored as plain text columns; the enums are the single source of valid values.

class RfxType(str, enum.Enum):
    RFQ = "RFQ"
    RFP = "RFP"
    RFI = "RFI"
    ITT = "ITT"
    RFT = "RFT"


class RfxStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    AWARDED = "awarded"
    CANCELLED = "cancelled"


class RfxResponseStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    AWARDED = "awarded"
    CLOSED = "closed"


class PurchaseOrderStatus(str, enum.Enum):
    ISSUED = "issued"


class SourcingStatus(str, enum.Enum):
    PO_ISSUED = "po_issued"


# ============= PURCHASING COLLABORATORS =============

class User(Base):
    """Application users (managed elsewhere)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255))
    email = Column(String(255), unique=True)
    role = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PurchaseRequest(Base):
    """Departmental purchase request, extended with award tracking."""
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(Text)
    justification = Column(Text)
    requester_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    estimated_cost = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Award tracking
    awarded_supplier_id = Column(Integer)
    awarded_rfx_id = Column(Integer)
    awarded_rfx_response_id = Column(Integer)
    purchase_order_id = Column(Integer)
    purchase_order_number = Column(Text)
    sourcing_status = Column(Text)
    awarded_at = Column(DateTime(timezone=True))
    po_issued_at = Column(DateTime(timezone=True))

    logs = relationship("RequestLog", back_populates="request", order_by="RequestLog.id")


class RequestLog(Base):
    """Audit trail of actions taken on a request."""
    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(Text, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    comments = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    request = relationship("PurchaseRequest", back_populates="logs")


# ============= SOURCING =============

class Supplier(Base):
    """Supplier directory entry, unique by case-insensitive name."""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    contact_email = Column(Text)
    contact_phone = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


Index("suppliers_name_ci_idx", func.lower(Supplier.name), unique=True)


class RfxEvent(Base):
    """Sourcing event (RFQ/RFP/RFI/ITT/RFT), optionally tied to a request."""
    __tablename__ = "rfx_events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(Text, nullable=False)
    rfx_type = Column(String(10), nullable=False)
    description = Column(Text)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="SET NULL"), index=True)
    due_date = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default=RfxStatus.OPEN.value,
                    server_default=RfxStatus.OPEN.value)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    responses = relationship("RfxResponse", back_populates="event")


class RfxResponse(Base):
    """A supplier bid against an RFx event."""
    __tablename__ = "rfx_responses"

    id = Column(Integer, primary_key=True, index=True)
    rfx_id = Column(Integer, ForeignKey("rfx_events.id", ondelete="CASCADE"), nullable=False)
    # Snapshot of the event's request_id at submission time
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="SET NULL"))
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    submitted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    bid_amount = Column(Float)
    notes = Column(Text)
    response_data = Column(JSON)
    status = Column(String(20), nullable=False, default=RfxResponseStatus.SUBMITTED.value,
                    server_default=RfxResponseStatus.SUBMITTED.value)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    event = relationship("RfxEvent", back_populates="responses")
    supplier = relationship("Supplier")

    __table_args__ = (
        Index("rfx_responses_rfx_id_idx", "rfx_id"),
    )


class PurchaseOrder(Base):
    """Purchase order issued when an RFx response is awarded. One per request."""
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, unique=True)
    rfx_id = Column(Integer, ForeignKey("rfx_events.id", ondelete="SET NULL"))
    rfx_response_id = Column(Integer, ForeignKey("rfx_responses.id", ondelete="SET NULL"))
    supplier_id = Column(Integer, ForeignKey("suppliers.id"))
    po_number = Column(Text, nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=PurchaseOrderStatus.ISSUED.value,
                    server_default=PurchaseOrderStatus.ISSUED.value)
    currency = Column(String(3), nullable=False, default="USD", server_default="USD")
    total_amount = Column(Float)
    notes = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    issued_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    supplier = relationship("Supplier")
