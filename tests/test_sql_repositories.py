"""
Tests for the SQL storage backend
Same engine flows over SQLAlchemy on in-memory SQLite
"""

import pytest
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from stockflow.core.exceptions import (
    ConcurrentModification, DocumentNotFound, DuplicateSerial, InsufficientStock,
    InvalidTransition,
)
from stockflow.models.audit import AuditLog
from stockflow.models.onhand import OnhandSerialRec
from stockflow.repositories.sql import _ledger_write_error
from stockflow.schemas.documents import LotDetails, LotEntry, SerialDetails
from stockflow.schemas.enums import DocEvent, DocStatus, DocType, LedgerOperation, SerialStatus
from stockflow.schemas.onhand import OnhandKey, OnhandRecord


class TestSqlDocuments:
    """Documents stored as header, line and history rows"""

    def test_round_trip(self, sql_flow, sql_engine):
        created = sql_flow.create(
            DocType.GR,
            lines=[
                {"model_code": "M1", "loc_code": "A1", "qty_planned": 4},
                {"model_code": "LOT1", "loc_code": "A2", "qty_planned": "2.5"},
            ],
            partner_code="SUP01",
            note="Dock 3",
        )

        loaded = sql_engine.get_document(created.id)

        assert loaded.doc_no == created.doc_no
        assert loaded.status == DocStatus.NEW
        assert loaded.partner_code == "SUP01"
        assert [line.line_id for line in loaded.lines] == [line.line_id for line in created.lines]
        assert loaded.lines[1].qty_planned == Decimal("2.5")
        assert loaded.lines[1].details.tracking_type == "Lot"
        assert [h.note for h in loaded.history] == ["Document created."]
        assert loaded.created_at.tzinfo is not None

    def test_history_appends_in_order(self, sql_flow, sql_engine):
        gr = sql_flow.receive("M1", "A1", 3)

        loaded = sql_engine.get_document(gr.id)

        assert [h.status for h in loaded.history] == [
            DocStatus.NEW, DocStatus.RECEIVING, DocStatus.SUBMITTED, DocStatus.COMPLETED,
        ]
        assert loaded.lines[0].qty_received == Decimal("3")

    def test_stale_version_rejected(self, sql_flow, sql_engine):
        gr = sql_flow.create(DocType.GR, lines=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 1}])
        repo = sql_engine.documents.repo
        first = repo.get(gr.id)
        second = repo.get(gr.id)

        first.note = "first writer"
        repo.update(first)
        second.note = "second writer"

        with pytest.raises(ConcurrentModification):
            repo.update(second)
        assert repo.get(gr.id).note == "first writer"

    def test_unknown_document(self, sql_engine):
        with pytest.raises(DocumentNotFound):
            sql_engine.get_document("missing")

    def test_sequence_per_type_and_period(self, sql_engine):
        repo = sql_engine.documents.repo

        assert repo.next_sequence(DocType.GR, "202601") == 1
        assert repo.next_sequence(DocType.GR, "202601") == 2
        assert repo.next_sequence(DocType.GI, "202601") == 1
        assert repo.next_sequence(DocType.GR, "202602") == 1

    def test_list_filters(self, sql_flow, sql_engine):
        sql_flow.create(DocType.GR, lines=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 1}])
        sql_flow.create(DocType.GI, lines=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 1}])
        sql_flow.create(DocType.GI, wh_code="WH2", lines=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 1}])

        assert len(sql_engine.list_documents(doc_type=DocType.GI)) == 2
        assert len(sql_engine.list_documents(doc_type=DocType.GI, wh_code="WH2")) == 1
        assert len(sql_engine.list_documents(status=DocStatus.NEW)) == 3


class TestSqlLedger:
    """Ledger postings through SQL units"""

    def test_receive_reserve_consume(self, sql_flow, sql_engine):
        """Receive, reserve at confirm, consume at approval"""
        sql_flow.receive("M1", "L1", 100, wh_code="W1")
        gi = sql_flow.act(sql_flow.pick("M1", "L1", 30, wh_code="W1"), DocEvent.CONFIRM)

        record = sql_engine.get_onhand("W1", "L1", "M1")
        assert (record.onhand_qty, record.allocated_qty, record.available_qty) == (
            Decimal("100"), Decimal("30"), Decimal("70"),
        )

        sql_flow.act(gi, DocEvent.APPROVE)

        record = sql_engine.get_onhand("W1", "L1", "M1")
        assert (record.onhand_qty, record.allocated_qty) == (Decimal("70"), Decimal("0"))
        operations = {e.operation for e in sql_engine.onhand_history("W1", "L1", "M1")}
        assert operations == {LedgerOperation.RECEIVE, LedgerOperation.RESERVE, LedgerOperation.CONSUME}

    def test_failed_confirm_rolls_back(self, sql_flow, sql_engine):
        sql_flow.receive("M1", "A1", 2)
        gi = sql_flow.pick("M1", "A1", 3)

        with pytest.raises(InsufficientStock):
            sql_flow.act(gi, DocEvent.CONFIRM)

        assert sql_engine.get_onhand("WH1", "A1", "M1").allocated_qty == Decimal("0")
        assert sql_engine.get_document(gi.id).status == DocStatus.PICKING

    def test_serials_are_unique_rows(self, sql_flow, sql_engine):
        sql_flow.receive("SER1", "A1", 2, details=SerialDetails(serials=["S1", "S2"]))
        gr = sql_flow.create(DocType.GR, lines=[{"model_code": "SER1", "loc_code": "A2", "qty_planned": 1}])
        gr = sql_flow.act(gr, DocEvent.START_RECEIVING)

        with pytest.raises(DuplicateSerial):
            sql_flow.actual(gr, 1, 1, SerialDetails(serials=["S1"]))

        gi = sql_flow.act(
            sql_flow.pick("SER1", "A1", 1, details=SerialDetails(serials=["S1"])), DocEvent.CONFIRM,
        )
        reserved = sql_engine.list_serials("WH1", "A1", "SER1", SerialStatus.RESERVED)
        assert [(s.serial_no, s.reserved_doc_no) for s in reserved] == [("S1", gi.doc_no)]

        sql_flow.act(gi, DocEvent.APPROVE)

        session_factory = sql_engine.documents.repo.session_factory
        with session_factory() as session:
            serials = session.scalars(select(OnhandSerialRec.serial_no)).all()
        assert serials == ["S2"]

    def test_lot_rows(self, sql_flow, sql_engine):
        sql_flow.receive("LOT1", "A1", 5, details=LotDetails(lots=[
            LotEntry(lot_code="L1", qty=Decimal("3")),
            LotEntry(lot_code="L2", qty=Decimal("2")),
        ]))
        gi = sql_flow.pick("LOT1", "A1", 3, details=LotDetails(lots=[LotEntry(lot_code="L1", qty=Decimal("3"))]))
        sql_flow.act(sql_flow.act(gi, DocEvent.CONFIRM), DocEvent.APPROVE)

        lots = sql_engine.list_lots("WH1", "A1", "LOT1")

        assert [(lot.lot_code, lot.onhand_qty) for lot in lots] == [("L2", Decimal("2"))]


class TestSqlCountsAndTransfers:

    def test_count_adjustment(self, sql_flow, sql_engine):
        """Counted 45 against a system 50 posts -5"""
        sql_flow.receive("M1", "A1", 50)
        ic = sql_flow.act(sql_flow.create(DocType.IC), DocEvent.START_COUNTING)
        ic = sql_flow.actual(ic, 1, 45)
        ic = sql_flow.act(ic, DocEvent.SUBMIT_COUNT)

        assert sql_engine.query_variance(ic.id).discrepancy == 1

        sql_flow.act(ic, DocEvent.COMPLETE)
        assert sql_engine.get_onhand("WH1", "A1", "M1").onhand_qty == Decimal("45")

    def test_transfer_children_found_by_transfer_no(self, sql_flow, sql_engine):
        sql_flow.receive("M1", "A1", 5)
        gt = sql_flow.create(
            DocType.GT, dest_wh_code="WH2",
            lines=[{"model_code": "M1", "loc_code": "A1", "dest_loc_code": "B1", "qty_planned": 5}],
        )
        gi = sql_engine.list_documents(doc_type=DocType.GI, gt_no=gt.doc_no)[0]
        gi = sql_flow.act(gi, DocEvent.START_PICKING)
        gi = sql_flow.actual(gi, 1, 5)
        sql_flow.act(sql_flow.act(gi, DocEvent.CONFIRM), DocEvent.APPROVE)

        gt = sql_engine.get_document(gt.id)

        assert gt.status == DocStatus.RECEIVING
        gr = sql_engine.list_documents(doc_type=DocType.GR, gt_no=gt.doc_no)
        assert [d.doc_no for d in gr] == [gt.linked_gr_no]

    def test_audit_rows_written(self, sql_flow, sql_engine):
        gr = sql_flow.create(DocType.GR, lines=[{"model_code": "M1", "loc_code": "A1", "qty_planned": 1}])
        with pytest.raises(InvalidTransition):
            sql_flow.act(gr, DocEvent.APPROVE)

        session_factory = sql_engine.documents.repo.session_factory
        with session_factory() as session:
            total = session.scalar(select(func.count()).select_from(AuditLog))
            failed = session.scalar(
                select(func.count()).select_from(AuditLog).where(AuditLog.audit_success.is_(False))
            )
        assert total == 2
        assert failed == 1


class TestSqlConstraintErrors:
    """Constraint breaches on ledger rows surface as domain errors"""

    def test_negative_onhand_is_insufficient_stock(self, sql_engine):
        store = sql_engine.ledger.store
        key = OnhandKey("WH1", "A1", "M1")

        with pytest.raises(InsufficientStock):
            with store.unit(key) as unit:
                unit.put_record(OnhandRecord.empty(key).model_copy(update={"onhand_qty": Decimal("-1")}))

        assert store.get_record(key) is None

    def test_only_serial_collisions_are_duplicate_serials(self):
        key = OnhandKey("WH1", "A1", "SER1")
        serial = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: onhand_serials.serial_no"))
        check = IntegrityError(
            "UPDATE", {}, Exception("CHECK constraint failed: ck_onhand_records_onhand_non_negative"),
        )
        other = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: onhand_history.posting_id"))

        assert isinstance(_ledger_write_error(serial, key), DuplicateSerial)
        assert isinstance(_ledger_write_error(check, key), InsufficientStock)
        assert _ledger_write_error(other, key) is None
