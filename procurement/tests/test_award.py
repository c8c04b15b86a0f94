"""
Tests for the award & purchase order issuance transaction.
"""
import re
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from procurement.core.errors import ConflictError, NotFoundError, ValidationError
from procurement.db.models import (
    PurchaseOrder, PurchaseRequest, RequestLog, RfxEvent, RfxResponse,
)
from procurement.services.award import award_response, generate_po_number
from procurement.services.rfx_events import create_event, update_event_status
from procurement.services.rfx_responses import submit_response
from procurement.tests.conftest import MANAGER_ID


@pytest.fixture
def event_with_bids(db_session: Session, purchase_request):
    """Event E on request 100 with responses R1 (Acme) and R2 (Globex)."""
    event = create_event(db_session, "Centrifuges", "RFQ", request_id=purchase_request.id)
    r1 = submit_response(db_session, event["id"], "Acme", bid_amount=1200)
    r2 = submit_response(db_session, event["id"], "Globex", bid_amount=1350)
    return event, r1, r2


def _statuses(db: Session, rfx_id: int) -> dict:
    db.expire_all()
    return {r.id: r.status for r in db.query(RfxResponse).filter(RfxResponse.rfx_id == rfx_id)}


class TestGeneratePoNumber:

    def test_format(self):
        assert re.fullmatch(r"PO-\d{13}-\d{5}", generate_po_number())

    def test_custom_prefix(self):
        assert generate_po_number("PUR").startswith("PUR-")


class TestAwardSuccess:

    def test_issues_purchase_order(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, _ = event_with_bids

        result = award_response(db_session, event["id"], r1["id"], notes="Best value", actor_id=MANAGER_ID)

        po = result["purchase_order"]
        assert result["awarded_response_id"] == r1["id"]
        assert po["request_id"] == purchase_request.id
        assert po["rfx_id"] == event["id"]
        assert po["rfx_response_id"] == r1["id"]
        assert po["supplier_id"] == r1["supplier_id"]
        assert po["supplier_name"] == "Acme"
        assert po["total_amount"] == 1200
        assert po["status"] == "issued"
        assert po["currency"] == "USD"
        assert po["notes"] == "Best value"
        assert po["created_by"] == MANAGER_ID
        assert re.fullmatch(r"PO-\d{13}-\d{5}", po["po_number"])

    def test_exactly_one_response_awarded_siblings_closed(self, db_session: Session, event_with_bids):
        event, r1, r2 = event_with_bids

        award_response(db_session, event["id"], r2["id"])

        assert _statuses(db_session, event["id"]) == {r1["id"]: "closed", r2["id"]: "awarded"}
        assert db_session.get(RfxEvent, event["id"]).status == "awarded"

    def test_updates_request_award_fields(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, _ = event_with_bids

        result = award_response(db_session, event["id"], r1["id"])

        request = result["request"]
        assert request["id"] == purchase_request.id
        assert request["awarded_supplier_id"] == r1["supplier_id"]
        assert request["awarded_rfx_id"] == event["id"]
        assert request["awarded_rfx_response_id"] == r1["id"]
        assert request["purchase_order_id"] == result["purchase_order"]["id"]
        assert request["purchase_order_number"] == result["purchase_order"]["po_number"]
        assert request["sourcing_status"] == "po_issued"
        assert request["awarded_at"] is not None
        assert request["po_issued_at"] is not None

    def test_existing_award_timestamps_are_kept(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, _ = event_with_bids
        first_award = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
        purchase_request.awarded_at = first_award
        db_session.commit()

        result = award_response(db_session, event["id"], r1["id"])

        assert result["request"]["awarded_at"] == first_award
        assert result["request"]["po_issued_at"] is not None

    def test_appends_request_log(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, _ = event_with_bids

        result = award_response(db_session, event["id"], r1["id"], actor_id=MANAGER_ID)

        logs = db_session.query(RequestLog).filter(RequestLog.request_id == purchase_request.id).all()
        assert len(logs) == 1
        assert logs[0].actor_id == MANAGER_ID
        assert f"#{r1['id']}" in logs[0].comments
        assert result["purchase_order"]["po_number"] in logs[0].comments

    def test_supplied_po_number_is_used(self, db_session: Session, event_with_bids):
        event, r1, _ = event_with_bids

        result = award_response(db_session, event["id"], r1["id"], po_number="  PO-2024-0001 ")

        assert result["purchase_order"]["po_number"] == "PO-2024-0001"

    def test_backfills_event_request_from_response(self, db_session: Session, purchase_request):
        event = create_event(db_session, "Unlinked", "RFP")
        response = submit_response(db_session, event["id"], "Acme", bid_amount=50)
        # Response linked to the request after the fact (e.g. by a buyer)
        db_session.get(RfxResponse, response["id"]).request_id = purchase_request.id
        db_session.commit()

        award_response(db_session, event["id"], response["id"])

        db_session.expire_all()
        assert db_session.get(RfxEvent, event["id"]).request_id == purchase_request.id

    def test_closed_event_can_be_awarded(self, db_session: Session, event_with_bids):
        event, r1, _ = event_with_bids
        update_event_status(db_session, event["id"], "closed")

        award_response(db_session, event["id"], r1["id"])

        assert db_session.get(RfxEvent, event["id"]).status == "awarded"


class TestAwardGuards:

    def test_second_award_on_same_request_is_rejected(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, r2 = event_with_bids
        first = award_response(db_session, event["id"], r1["id"])

        with pytest.raises(ValidationError) as exc:
            award_response(db_session, event["id"], r2["id"])

        assert first["purchase_order"]["po_number"] in exc.value.message
        assert db_session.query(PurchaseOrder).filter(
            PurchaseOrder.request_id == purchase_request.id
        ).count() == 1
        assert _statuses(db_session, event["id"]) == {r1["id"]: "awarded", r2["id"]: "closed"}

    def test_retry_of_same_award_is_rejected(self, db_session: Session, event_with_bids):
        event, r1, _ = event_with_bids
        award_response(db_session, event["id"], r1["id"])

        with pytest.raises(ValidationError):
            award_response(db_session, event["id"], r1["id"])
        assert db_session.query(PurchaseOrder).count() == 1

    def test_award_from_another_event_on_same_request_is_rejected(
        self, db_session: Session, event_with_bids, purchase_request
    ):
        event, r1, _ = event_with_bids
        award_response(db_session, event["id"], r1["id"])
        second_event = create_event(db_session, "Re-tender", "ITT", request_id=purchase_request.id)
        late = submit_response(db_session, second_event["id"], "Initech", bid_amount=900)

        with pytest.raises(ValidationError, match="already exists"):
            award_response(db_session, second_event["id"], late["id"])

        assert db_session.query(PurchaseOrder).count() == 1
        assert db_session.get(RfxEvent, second_event["id"]).status == "open"

    def test_response_must_belong_to_event(self, db_session: Session, event_with_bids, purchase_request):
        event, r1, _ = event_with_bids
        other = create_event(db_session, "Other", "RFQ", request_id=purchase_request.id)

        with pytest.raises(NotFoundError):
            award_response(db_session, other["id"], r1["id"])
        assert db_session.query(PurchaseOrder).count() == 0

    def test_unknown_response(self, db_session: Session, event_with_bids):
        event, _, _ = event_with_bids

        with pytest.raises(NotFoundError):
            award_response(db_session, event["id"], 9999)

    def test_response_without_request_is_rejected(self, db_session: Session):
        event = create_event(db_session, "Unlinked", "RFQ")
        response = submit_response(db_session, event["id"], "Acme", bid_amount=10)

        with pytest.raises(ValidationError, match="not linked to a purchase request"):
            award_response(db_session, event["id"], response["id"])

    def test_cancelled_event_is_rejected(self, db_session: Session, event_with_bids):
        event, r1, _ = event_with_bids
        update_event_status(db_session, event["id"], "cancelled")

        with pytest.raises(ValidationError, match="cancelled"):
            award_response(db_session, event["id"], r1["id"])
        assert db_session.query(PurchaseOrder).count() == 0

    @pytest.mark.parametrize("response_id", [None, "abc", 0, -1])
    def test_invalid_response_id(self, db_session: Session, event_with_bids, response_id):
        event, _, _ = event_with_bids

        with pytest.raises(ValidationError, match="Invalid response id"):
            award_response(db_session, event["id"], response_id)


class TestPoNumberCollisions:

    @pytest.fixture
    def existing_po(self, db_session: Session):
        other_request = PurchaseRequest(id=101, title="Other request", status="approved")
        db_session.add(other_request)
        db_session.flush()
        po = PurchaseOrder(request_id=101, po_number="PO-TAKEN")
        db_session.add(po)
        db_session.commit()
        return po

    def test_supplied_duplicate_number_conflicts_and_rolls_back(
        self, db_session: Session, event_with_bids, existing_po, purchase_request
    ):
        event, r1, r2 = event_with_bids

        with pytest.raises(ConflictError):
            award_response(db_session, event["id"], r1["id"], po_number="PO-TAKEN")

        db_session.expire_all()
        assert db_session.query(PurchaseOrder).count() == 1
        assert db_session.get(PurchaseRequest, purchase_request.id).purchase_order_id is None
        assert db_session.get(RfxEvent, event["id"]).status == "open"
        assert _statuses(db_session, event["id"]) == {r1["id"]: "submitted", r2["id"]: "submitted"}
        assert db_session.query(RequestLog).count() == 0

    def test_generated_number_collision_is_retried(self, db_session: Session, event_with_bids, existing_po):
        event, r1, _ = event_with_bids

        with patch(
            "procurement.services.award.generate_po_number",
            side_effect=["PO-TAKEN", "PO-FRESH"],
        ):
            result = award_response(db_session, event["id"], r1["id"])

        assert result["purchase_order"]["po_number"] == "PO-FRESH"
        assert db_session.query(PurchaseOrder).count() == 2

    def test_gives_up_after_max_attempts(self, db_session: Session, event_with_bids, existing_po):
        event, r1, _ = event_with_bids

        with patch("procurement.services.award.generate_po_number", return_value="PO-TAKEN"):
            with pytest.raises(ConflictError, match="unique purchase order number"):
                award_response(db_session, event["id"], r1["id"])

        assert db_session.query(PurchaseOrder).count() == 1
