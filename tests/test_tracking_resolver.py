"""
Tests for the Tracking Resolver
Serial and lot details checked against declared quantities and the ledger
"""

import pytest
from decimal import Decimal

from stockflow.core.exceptions import (
    DuplicateSerial, InsufficientLotQty, LotQtyMismatch, SerialNotAvailable,
    SerialQtyMismatch, ValidationError,
)
from stockflow.schemas.documents import (
    IssueLine, LotDetails, LotEntry, NoDetails, ReceiptLine, SerialDetails,
)
from stockflow.schemas.enums import DetailOperation, DocEvent, TrackingType


def serial_line(qty=2):
    return ReceiptLine(model_code="SER1", loc_code="A1", tracking_type=TrackingType.SERIAL, qty_planned=qty)


def lot_issue_line(qty=5):
    return IssueLine(model_code="LOT1", loc_code="A1", tracking_type=TrackingType.LOT, qty_planned=qty)


class TestSerialDetails:
    """Serial-tracked lines"""

    def test_receipt_serials_accepted(self, engine):
        """Distinct unknown serials matching the quantity pass"""
        resolver = engine.documents.resolver

        resolver.validate_details(
            serial_line(), TrackingType.SERIAL, Decimal("2"),
            SerialDetails(serials=["S1", "S2"]), DetailOperation.RECEIPT, "WH1", "A1",
        )

    def test_serial_listed_twice(self, engine):
        resolver = engine.documents.resolver

        with pytest.raises(DuplicateSerial):
            resolver.validate_details(
                serial_line(), TrackingType.SERIAL, Decimal("2"),
                SerialDetails(serials=["S1", "S1"]), DetailOperation.RECEIPT, "WH1", "A1",
            )

    def test_serial_repeated_across_lines(self, engine):
        resolver = engine.documents.resolver
        first = serial_line(1).model_copy(update={"line_no": 1, "details": SerialDetails(serials=["S1"])})
        second = serial_line(1).model_copy(update={"line_no": 2, "details": SerialDetails(serials=["S1"])})

        with pytest.raises(DuplicateSerial) as exc_info:
            resolver.validate_unique_serials([first, second])

        assert exc_info.value.context["line_ids"] == [first.line_id, second.line_id]

    def test_distinct_serials_across_lines_pass(self, engine):
        resolver = engine.documents.resolver
        first = serial_line(1).model_copy(update={"line_no": 1, "details": SerialDetails(serials=["S1"])})
        second = serial_line(1).model_copy(update={"line_no": 2, "details": SerialDetails(serials=["S2"])})

        resolver.validate_unique_serials([first, second])

    def test_serial_count_must_match_quantity(self, engine):
        resolver = engine.documents.resolver

        with pytest.raises(SerialQtyMismatch) as exc_info:
            resolver.validate_details(
                serial_line(3), TrackingType.SERIAL, Decimal("3"),
                SerialDetails(serials=["S1", "S2"]), DetailOperation.RECEIPT, "WH1", "A1",
            )

        assert exc_info.value.context["detail_qty"] == 2

    def test_receipt_of_serial_already_in_stock(self, engine, flow):
        """A serial in stock anywhere cannot be received again"""
        flow.receive("SER1", "A1", 1, wh_code="WH2", details=SerialDetails(serials=["S9"]))
        resolver = engine.documents.resolver

        with pytest.raises(DuplicateSerial, match="S9"):
            resolver.validate_details(
                serial_line(1), TrackingType.SERIAL, Decimal("1"),
                SerialDetails(serials=["S9"]), DetailOperation.RECEIPT, "WH1", "A1",
            )

    def test_issue_requires_available_serial_at_location(self, engine, flow):
        """Issued serials must be available at the line's own key"""
        flow.receive("SER1", "A1", 2, details=SerialDetails(serials=["S1", "S2"]))
        resolver = engine.documents.resolver
        line = IssueLine(model_code="SER1", loc_code="A2", tracking_type=TrackingType.SERIAL, qty_planned=1)

        with pytest.raises(SerialNotAvailable):
            resolver.validate_details(
                line, TrackingType.SERIAL, Decimal("1"),
                SerialDetails(serials=["S1"]), DetailOperation.ISSUE, "WH1", "A2",
            )

        # Same serial at the right location is fine
        line_a1 = IssueLine(model_code="SER1", loc_code="A1", tracking_type=TrackingType.SERIAL, qty_planned=1)
        resolver.validate_details(
            line_a1, TrackingType.SERIAL, Decimal("1"),
            SerialDetails(serials=["S1"]), DetailOperation.ISSUE, "WH1", "A1",
        )

    def test_serial_reserved_by_other_issue_not_available(self, engine, flow):
        flow.receive("SER1", "A1", 1, details=SerialDetails(serials=["S1"]))
        gi = flow.pick("SER1", "A1", 1, details=SerialDetails(serials=["S1"]))
        flow.act(gi, DocEvent.CONFIRM)
        resolver = engine.documents.resolver
        line = IssueLine(model_code="SER1", loc_code="A1", tracking_type=TrackingType.SERIAL, qty_planned=1)

        with pytest.raises(SerialNotAvailable):
            resolver.validate_details(
                line, TrackingType.SERIAL, Decimal("1"),
                SerialDetails(serials=["S1"]), DetailOperation.ISSUE, "WH1", "A1", doc_no="GI-OTHER",
            )

        # The reserving issue itself still sees it
        resolver.validate_details(
            line, TrackingType.SERIAL, Decimal("1"),
            SerialDetails(serials=["S1"]), DetailOperation.ISSUE, "WH1", "A1", doc_no=gi.doc_no,
        )


class TestLotDetails:
    """Lot-tracked lines"""

    def test_lot_total_must_match(self, engine):
        resolver = engine.documents.resolver
        details = LotDetails(lots=[LotEntry(lot_code="L1", qty=Decimal("3")), LotEntry(lot_code="L2", qty=Decimal("1"))])

        with pytest.raises(LotQtyMismatch):
            resolver.validate_details(
                lot_issue_line(), TrackingType.LOT, Decimal("5"), details, DetailOperation.RECEIPT, "WH1", "A1",
            )

    def test_issue_lot_quantity_limited_by_lot_available(self, engine, flow):
        flow.receive("LOT1", "A1", 5, details=LotDetails(lots=[
            LotEntry(lot_code="L1", qty=Decimal("3")),
            LotEntry(lot_code="L2", qty=Decimal("2")),
        ]))
        resolver = engine.documents.resolver
        too_much = LotDetails(lots=[LotEntry(lot_code="L2", qty=Decimal("3"))])

        with pytest.raises(InsufficientLotQty) as exc_info:
            resolver.validate_details(
                lot_issue_line(3), TrackingType.LOT, Decimal("3"), too_much, DetailOperation.ISSUE, "WH1", "A1",
            )

        assert exc_info.value.context["lot_code"] == "L2"

    def test_repeated_lot_entries_are_aggregated(self, engine, flow):
        """Two entries of one lot count against that lot together"""
        flow.receive("LOT1", "A1", 3, details=LotDetails(lots=[LotEntry(lot_code="L1", qty=Decimal("3"))]))
        resolver = engine.documents.resolver
        split = LotDetails(lots=[LotEntry(lot_code="L1", qty=Decimal("2")), LotEntry(lot_code="L1", qty=Decimal("2"))])

        with pytest.raises(InsufficientLotQty):
            resolver.validate_details(
                lot_issue_line(4), TrackingType.LOT, Decimal("4"), split, DetailOperation.ISSUE, "WH1", "A1",
            )


class TestUntracked:

    def test_no_details_pass(self, engine):
        line = ReceiptLine(model_code="M1", loc_code="A1", qty_planned=4)

        engine.documents.resolver.validate_details(
            line, TrackingType.NONE, Decimal("4"), NoDetails(), DetailOperation.RECEIPT, "WH1", "A1",
        )

    def test_details_of_wrong_kind_rejected(self, engine):
        line = ReceiptLine(model_code="M1", loc_code="A1", qty_planned=1)

        with pytest.raises(ValidationError):
            engine.documents.resolver.validate_details(
                line, TrackingType.NONE, Decimal("1"),
                SerialDetails(serials=["S1"]), DetailOperation.RECEIPT, "WH1", "A1",
            )
