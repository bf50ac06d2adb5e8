"""
SQLAlchemy storage backend

Each ledger unit runs in its own session: the onhand row is read
``with_for_update`` and everything staged through the unit is committed in a
single transaction when the unit exits cleanly.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from stockflow.core.clock import ensure_aware
from stockflow.core.exceptions import (
    ConcurrentModification, DocumentNotFound, DuplicateSerial, InsufficientStock, StockflowException,
)
from stockflow.models.audit import AuditLog
from stockflow.models.documents import (
    DocumentLineRec, DocumentRec, DocumentSequenceRec, DocumentStatusHistoryRec,
)
from stockflow.models.onhand import (
    ModelGoodsRec, OnhandHistoryRec, OnhandLotRec, OnhandRec, OnhandSerialRec,
)
from stockflow.schemas.documents import DOCUMENT_CLASSES
from stockflow.schemas.enums import DocStatus, DocType, SerialStatus
from stockflow.schemas.master import AuditEvent, ModelGoods
from stockflow.schemas.onhand import (
    OnhandHistoryEntry, OnhandKey, OnhandLot, OnhandRecord, OnhandSerial,
)

from .base import AuditSink, DocumentRepository, ModelCatalog, OnhandStore, OnhandUnit

logger = logging.getLogger(__name__)

# Stored as child rows, not in the header payload
_CHILD_FIELDS = ("lines", "history")


# Row <-> schema conversion

def _record_from_row(row: OnhandRec) -> OnhandRecord:
    return OnhandRecord(
        wh_code=row.wh_code,
        loc_code=row.loc_code,
        model_code=row.model_code,
        tracking_type=row.tracking_type,
        onhand_qty=row.onhand_qty,
        allocated_qty=row.allocated_qty,
        last_movement_at=ensure_aware(row.last_movement_at),
        version=row.version,
    )


def _serial_from_row(row: OnhandSerialRec) -> OnhandSerial:
    return OnhandSerial(
        serial_no=row.serial_no,
        wh_code=row.wh_code,
        loc_code=row.loc_code,
        model_code=row.model_code,
        status=row.status,
        reserved_doc_no=row.reserved_doc_no,
        received_at=ensure_aware(row.received_at),
        last_movement_at=ensure_aware(row.last_movement_at),
    )


def _lot_from_row(row: OnhandLotRec) -> OnhandLot:
    return OnhandLot(
        wh_code=row.wh_code,
        loc_code=row.loc_code,
        model_code=row.model_code,
        lot_code=row.lot_code,
        onhand_qty=row.onhand_qty,
        allocated_qty=row.allocated_qty,
        expiry_date=row.expiry_date,
        received_at=ensure_aware(row.received_at),
    )


def _history_from_row(row: OnhandHistoryRec) -> OnhandHistoryEntry:
    return OnhandHistoryEntry(
        posting_id=row.posting_id,
        wh_code=row.wh_code,
        loc_code=row.loc_code,
        model_code=row.model_code,
        txn_date=ensure_aware(row.txn_date),
        operation=row.operation,
        qty_change=row.qty_change,
        allocated_change=row.allocated_change,
        doc_type=row.doc_type,
        doc_no=row.doc_no,
        actor=row.actor,
        remark=row.remark,
    )


def _ledger_write_error(error: IntegrityError, key) -> Optional[StockflowException]:
    """Translate a constraint breach on a ledger write, None when unrecognised"""
    detail = str(error.orig)
    if "onhand_serials" in detail:
        return DuplicateSerial(f"Serial already recorded, write for {key} rejected: {detail}", key=str(key))
    if "non_negative" in detail:
        return InsufficientStock(f"Ledger write for {key} would go below zero: {detail}", key=str(key))
    return None


class _SqlUnit(OnhandUnit):
    """OnhandUnit over an open session; see SqlOnhandStore.unit"""

    def __init__(self, session: Session, key: OnhandKey):
        self.session = session
        self.key = key

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as e:
            mapped = _ledger_write_error(e, self.key)
            if mapped is None:
                raise
            raise mapped from e

    def get_record(self) -> Optional[OnhandRecord]:
        row = self.session.get(OnhandRec, tuple(self.key), with_for_update=True)
        return _record_from_row(row) if row else None

    def put_record(self, record: OnhandRecord) -> None:
        row = self.session.get(OnhandRec, tuple(self.key))
        if row is None:
            row = OnhandRec(wh_code=record.wh_code, loc_code=record.loc_code, model_code=record.model_code)
            self.session.add(row)
        row.tracking_type = record.tracking_type.value
        row.onhand_qty = record.onhand_qty
        row.allocated_qty = record.allocated_qty
        row.last_movement_at = record.last_movement_at
        row.version = record.version
        self._flush()

    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]:
        row = self.session.get(OnhandSerialRec, serial_no)
        return _serial_from_row(row) if row else None

    def serials(self) -> List[OnhandSerial]:
        rows = self.session.scalars(
            select(OnhandSerialRec)
            .where(
                OnhandSerialRec.wh_code == self.key.wh_code,
                OnhandSerialRec.loc_code == self.key.loc_code,
                OnhandSerialRec.model_code == self.key.model_code,
            )
            .order_by(OnhandSerialRec.serial_no)
        ).all()
        return [_serial_from_row(r) for r in rows]

    def add_serial(self, serial: OnhandSerial) -> None:
        if self.session.get(OnhandSerialRec, serial.serial_no) is not None:
            raise DuplicateSerial(f"Serial {serial.serial_no} already exists", serial_no=serial.serial_no)
        data = serial.model_dump(mode="python")
        data["status"] = serial.status.value
        self.session.add(OnhandSerialRec(**data))
        self._flush()

    def put_serial(self, serial: OnhandSerial) -> None:
        row = self.session.get(OnhandSerialRec, serial.serial_no)
        row.status = serial.status.value
        row.reserved_doc_no = serial.reserved_doc_no
        row.last_movement_at = serial.last_movement_at
        self._flush()

    def delete_serial(self, serial_no: str) -> None:
        row = self.session.get(OnhandSerialRec, serial_no)
        if row is not None:
            self.session.delete(row)
            self._flush()

    def get_lot(self, lot_code: str) -> Optional[OnhandLot]:
        row = self.session.get(OnhandLotRec, (*self.key, lot_code))
        return _lot_from_row(row) if row else None

    def lots(self) -> List[OnhandLot]:
        rows = self.session.scalars(
            select(OnhandLotRec)
            .where(
                OnhandLotRec.wh_code == self.key.wh_code,
                OnhandLotRec.loc_code == self.key.loc_code,
                OnhandLotRec.model_code == self.key.model_code,
            )
            .order_by(OnhandLotRec.lot_code)
        ).all()
        return [_lot_from_row(r) for r in rows]

    def put_lot(self, lot: OnhandLot) -> None:
        row = self.session.get(OnhandLotRec, (*self.key, lot.lot_code))
        if row is None:
            row = OnhandLotRec(
                wh_code=lot.wh_code, loc_code=lot.loc_code, model_code=lot.model_code,
                lot_code=lot.lot_code, received_at=lot.received_at,
            )
            self.session.add(row)
        row.onhand_qty = lot.onhand_qty
        row.allocated_qty = lot.allocated_qty
        row.expiry_date = lot.expiry_date
        self._flush()

    def delete_lot(self, lot_code: str) -> None:
        row = self.session.get(OnhandLotRec, (*self.key, lot_code))
        if row is not None:
            self.session.delete(row)
            self._flush()

    def has_posting(self, posting_id: str) -> bool:
        return self.session.get(OnhandHistoryRec, posting_id) is not None

    def add_history(self, entry: OnhandHistoryEntry) -> None:
        data = entry.model_dump(mode="python")
        data["operation"] = entry.operation.value
        data["doc_type"] = entry.doc_type.value if entry.doc_type else None
        self.session.add(OnhandHistoryRec(**data))
        self._flush()

    def remove_history(self, posting_id: str) -> None:
        row = self.session.get(OnhandHistoryRec, posting_id)
        if row is not None:
            self.session.delete(row)
            self._flush()


class SqlOnhandStore(OnhandStore):

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def unit(self, key: OnhandKey) -> Iterator[OnhandUnit]:
        session = self.session_factory()
        try:
            yield _SqlUnit(session, OnhandKey(*key))
            try:
                session.commit()
            except IntegrityError as e:
                mapped = _ledger_write_error(e, key)
                if mapped is None:
                    raise
                raise mapped from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_record(self, key: OnhandKey) -> Optional[OnhandRecord]:
        with self.session_factory() as session:
            row = session.get(OnhandRec, tuple(key))
            return _record_from_row(row) if row else None

    def list_records(self, wh_code=None, loc_code=None, model_code=None) -> List[OnhandRecord]:
        query = select(OnhandRec)
        if wh_code is not None:
            query = query.where(OnhandRec.wh_code == wh_code)
        if loc_code is not None:
            query = query.where(OnhandRec.loc_code == loc_code)
        if model_code is not None:
            query = query.where(OnhandRec.model_code == model_code)
        query = query.order_by(OnhandRec.wh_code, OnhandRec.loc_code, OnhandRec.model_code)
        with self.session_factory() as session:
            return [_record_from_row(r) for r in session.scalars(query).all()]

    def list_serials(self, key: OnhandKey, status: Optional[SerialStatus] = None) -> List[OnhandSerial]:
        query = select(OnhandSerialRec).where(
            OnhandSerialRec.wh_code == key[0],
            OnhandSerialRec.loc_code == key[1],
            OnhandSerialRec.model_code == key[2],
        )
        if status is not None:
            query = query.where(OnhandSerialRec.status == SerialStatus(status).value)
        with self.session_factory() as session:
            rows = session.scalars(query.order_by(OnhandSerialRec.serial_no)).all()
            return [_serial_from_row(r) for r in rows]

    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]:
        with self.session_factory() as session:
            row = session.get(OnhandSerialRec, serial_no)
            return _serial_from_row(row) if row else None

    def list_lots(self, key: OnhandKey) -> List[OnhandLot]:
        query = (
            select(OnhandLotRec)
            .where(
                OnhandLotRec.wh_code == key[0],
                OnhandLotRec.loc_code == key[1],
                OnhandLotRec.model_code == key[2],
            )
            .order_by(OnhandLotRec.lot_code)
        )
        with self.session_factory() as session:
            return [_lot_from_row(r) for r in session.scalars(query).all()]

    def list_history(self, key=None, doc_no=None, limit: int = 100) -> List[OnhandHistoryEntry]:
        query = select(OnhandHistoryRec)
        if key is not None:
            query = query.where(
                OnhandHistoryRec.wh_code == key[0],
                OnhandHistoryRec.loc_code == key[1],
                OnhandHistoryRec.model_code == key[2],
            )
        if doc_no is not None:
            query = query.where(OnhandHistoryRec.doc_no == doc_no)
        query = query.order_by(OnhandHistoryRec.txn_date.desc()).limit(limit)
        with self.session_factory() as session:
            return [_history_from_row(r) for r in session.scalars(query).all()]


class SqlDocumentRepository(DocumentRepository):
    """
    Documents as header/line/history rows

    Type-specific fields are kept as JSON payloads so that all four document
    kinds share one set of tables.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # conversion

    @staticmethod
    def _to_document(row: DocumentRec):
        data = dict(row.payload)
        data.update(
            id=row.id,
            doc_no=row.doc_no,
            status=row.status,
            version=row.version,
            lines=[dict(line.payload) for line in row.lines],
            history=[
                {
                    "id": h.id,
                    "doc_id": h.doc_id,
                    "status": h.status,
                    "user": h.user,
                    "timestamp": ensure_aware(h.timestamp),
                    "event": h.event,
                    "note": h.note,
                }
                for h in row.history
            ],
        )
        return DOCUMENT_CLASSES[DocType(row.doc_type)].model_validate(data)

    @staticmethod
    def _fill_header(row: DocumentRec, document) -> None:
        payload = document.model_dump(mode="json", exclude=set(_CHILD_FIELDS))
        row.doc_type = document.doc_type
        row.doc_no = document.doc_no
        row.status = DocStatus(document.status).value
        row.wh_code = document.wh_code
        row.gt_no = getattr(document, "gt_no", None)
        row.created_at = document.created_at
        row.updated_at = document.updated_at
        row.created_by = document.created_by
        row.payload = payload

    @staticmethod
    def _sync_children(session: Session, row: DocumentRec, document) -> None:
        existing_lines = {line.line_id: line for line in row.lines}
        wanted = set()
        for line in document.lines:
            wanted.add(line.line_id)
            line_row = existing_lines.get(line.line_id)
            if line_row is None:
                line_row = DocumentLineRec(line_id=line.line_id, doc_id=document.id)
                row.lines.append(line_row)
            line_row.line_no = line.line_no
            line_row.model_code = line.model_code
            line_row.loc_code = line.loc_code
            line_row.payload = line.model_dump(mode="json")
        for line_id, line_row in existing_lines.items():
            if line_id not in wanted:
                row.lines.remove(line_row)

        # History is append-only
        known = {h.id for h in row.history}
        for seq, event in enumerate(document.history):
            if event.id in known:
                continue
            row.history.append(DocumentStatusHistoryRec(
                id=event.id,
                doc_id=document.id,
                seq=seq,
                status=event.status.value,
                user=event.user,
                timestamp=event.timestamp,
                event=event.event.value if event.event else None,
                note=event.note,
            ))

    # repository API

    def add(self, document):
        with self.session_factory() as session:
            row = DocumentRec(id=document.id, version=document.version)
            self._fill_header(row, document)
            session.add(row)
            self._sync_children(session, row, document)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ConcurrentModification(
                    f"Document number {document.doc_no} already exists", doc_no=document.doc_no
                )
            return self._to_document(row)

    def get(self, doc_id: str):
        with self.session_factory() as session:
            row = session.get(DocumentRec, doc_id)
            if row is None:
                raise DocumentNotFound(f"Document {doc_id} not found", doc_id=doc_id)
            return self._to_document(row)

    def get_by_no(self, doc_no: str):
        with self.session_factory() as session:
            row = session.scalars(select(DocumentRec).where(DocumentRec.doc_no == doc_no)).first()
            return self._to_document(row) if row else None

    def update(self, document):
        with self.session_factory() as session:
            row = session.get(DocumentRec, document.id, with_for_update=True)
            if row is None:
                raise DocumentNotFound(f"Document {document.id} not found", doc_id=document.id)
            if row.version != document.version:
                raise ConcurrentModification(
                    f"Document {document.doc_no} changed (stored v{row.version}, given v{document.version})",
                    doc_id=document.id,
                )
            self._fill_header(row, document)
            self._sync_children(session, row, document)
            row.version = document.version + 1
            session.commit()
            return self._to_document(row)

    def list(self, doc_type=None, status=None, wh_code=None, gt_no=None) -> List:
        query = select(DocumentRec)
        if doc_type is not None:
            query = query.where(DocumentRec.doc_type == DocType(doc_type).value)
        if status is not None:
            query = query.where(DocumentRec.status == DocStatus(status).value)
        if wh_code is not None:
            query = query.where(DocumentRec.wh_code == wh_code)
        if gt_no is not None:
            query = query.where(DocumentRec.gt_no == gt_no)
        query = query.order_by(DocumentRec.created_at.desc(), DocumentRec.doc_no.desc())
        with self.session_factory() as session:
            return [self._to_document(r) for r in session.scalars(query).all()]

    def next_sequence(self, doc_type: DocType, period: str) -> int:
        key = (DocType(doc_type).value, period)
        with self.session_factory() as session:
            row = session.get(DocumentSequenceRec, key, with_for_update=True)
            if row is None:
                row = DocumentSequenceRec(doc_type=key[0], period=period, last_value=0)
                session.add(row)
            row.last_value += 1
            value = row.last_value
            try:
                session.commit()
            except IntegrityError:
                # Another writer created the period row first
                session.rollback()
                return self.next_sequence(doc_type, period)
            return value


class SqlModelCatalog(ModelCatalog):

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, model_code: str) -> Optional[ModelGoods]:
        with self.session_factory() as session:
            row = session.get(ModelGoodsRec, model_code)
            if row is None:
                return None
            return ModelGoods(
                model_code=row.model_code,
                model_name=row.model_name,
                tracking_type=row.tracking_type,
                base_uom=row.base_uom,
                is_active=row.is_active,
            )

    def add(self, model: ModelGoods) -> ModelGoods:
        with self.session_factory() as session:
            row = session.get(ModelGoodsRec, model.model_code) or ModelGoodsRec(model_code=model.model_code)
            row.model_name = model.model_name
            row.tracking_type = model.tracking_type.value
            row.base_uom = model.base_uom
            row.is_active = model.is_active
            session.add(row)
            session.commit()
        return model


class SqlAuditSink(AuditSink):
    """Writes audit events to the audit_log table"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        with self.session_factory() as session:
            try:
                AuditLog.log_action(
                    session,
                    audit_timestamp=event.timestamp,
                    audit_user=event.actor,
                    audit_action=event.action,
                    audit_success=event.success,
                    audit_doc_id=event.doc_id,
                    audit_doc_no=event.doc_no,
                    audit_doc_type=event.doc_type,
                    audit_status_from=event.status_from,
                    audit_status_to=event.status_to,
                    audit_detail=event.model_dump(mode="json")["detail"],
                )
            except Exception as e:
                # Audit failures are logged, never raised
                logger.error(f"Failed to write audit event {event.action}: {e}")
                session.rollback()
