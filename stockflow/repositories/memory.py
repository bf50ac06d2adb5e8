"""
In-memory storage backend

Thread-safe for the engine's access pattern: ledger keys are only written
while the ledger holds that key's lock, so the store itself only guards the
structures shared between keys (the global serial registry, the posting-id
index and the document table).
"""
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from stockflow.core.exceptions import ConcurrentModification, DocumentNotFound, DuplicateSerial
from stockflow.schemas.enums import DocStatus, DocType, SerialStatus
from stockflow.schemas.master import AuditEvent, ModelGoods
from stockflow.schemas.onhand import (
    OnhandHistoryEntry, OnhandKey, OnhandLot, OnhandRecord, OnhandSerial,
)

from .base import AuditSink, DocumentRepository, ModelCatalog, OnhandStore, OnhandUnit


class InMemoryDocumentRepository(DocumentRepository):

    def __init__(self):
        self._docs: Dict[str, object] = {}
        self._by_no: Dict[str, str] = {}
        self._sequences: Dict[tuple, int] = defaultdict(int)
        self._lock = threading.Lock()

    def add(self, document):
        with self._lock:
            if document.doc_no in self._by_no:
                raise ConcurrentModification(
                    f"Document number {document.doc_no} already exists", doc_no=document.doc_no
                )
            stored = document.model_copy(deep=True)
            self._docs[stored.id] = stored
            self._by_no[stored.doc_no] = stored.id
            return stored.model_copy(deep=True)

    def get(self, doc_id: str):
        with self._lock:
            doc = self._docs.get(doc_id)
            if doc is None:
                raise DocumentNotFound(f"Document {doc_id} not found", doc_id=doc_id)
            return doc.model_copy(deep=True)

    def get_by_no(self, doc_no: str):
        with self._lock:
            doc_id = self._by_no.get(doc_no)
            return self._docs[doc_id].model_copy(deep=True) if doc_id else None

    def update(self, document):
        with self._lock:
            current = self._docs.get(document.id)
            if current is None:
                raise DocumentNotFound(f"Document {document.id} not found", doc_id=document.id)
            if current.version != document.version:
                raise ConcurrentModification(
                    f"Document {document.doc_no} changed (stored v{current.version}, given v{document.version})",
                    doc_id=document.id,
                )
            stored = document.model_copy(deep=True, update={"version": document.version + 1})
            self._docs[stored.id] = stored
            return stored.model_copy(deep=True)

    def list(self, doc_type=None, status=None, wh_code=None, gt_no=None) -> List:
        with self._lock:
            docs = [d for d in self._docs.values() if _matches(d, doc_type, status, wh_code, gt_no)]
            docs.sort(key=lambda d: (d.created_at, d.doc_no), reverse=True)
            return [d.model_copy(deep=True) for d in docs]

    def next_sequence(self, doc_type: DocType, period: str) -> int:
        with self._lock:
            self._sequences[(DocType(doc_type), period)] += 1
            return self._sequences[(DocType(doc_type), period)]


def _matches(doc, doc_type, status, wh_code, gt_no) -> bool:
    if doc_type is not None and doc.doc_type != DocType(doc_type):
        return False
    if status is not None and doc.status != DocStatus(status):
        return False
    if wh_code is not None and doc.wh_code != wh_code:
        return False
    if gt_no is not None and getattr(doc, "gt_no", None) != gt_no:
        return False
    return True


class _MemoryUnit(OnhandUnit):
    """Staged writes for one key; see InMemoryOnhandStore.unit"""

    def __init__(self, store: "InMemoryOnhandStore", key: OnhandKey):
        self.store = store
        self.key = key
        self._record = store._records.get(key)
        self._record_dirty = False
        self._serial_inserts: Dict[str, OnhandSerial] = {}
        self._serial_updates: Dict[str, OnhandSerial] = {}
        self._serial_deletes: Set[str] = set()
        self._lot_puts: Dict[str, OnhandLot] = {}
        self._lot_deletes: Set[str] = set()
        self._history_adds: List[OnhandHistoryEntry] = []
        self._history_removes: Set[str] = set()

    # record
    def get_record(self) -> Optional[OnhandRecord]:
        return self._record.model_copy() if self._record else None

    def put_record(self, record: OnhandRecord) -> None:
        self._record = record.model_copy()
        self._record_dirty = True

    # serials
    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]:
        if serial_no in self._serial_deletes:
            return None
        staged = self._serial_inserts.get(serial_no) or self._serial_updates.get(serial_no)
        if staged:
            return staged.model_copy()
        found = self.store._serials.get(serial_no)
        return found.model_copy() if found else None

    def serials(self) -> List[OnhandSerial]:
        numbers = set(self.store._serials_by_key.get(self.key, set()))
        numbers |= set(self._serial_inserts)
        numbers -= self._serial_deletes
        return [s for s in (self.find_serial(n) for n in sorted(numbers)) if s is not None]

    def add_serial(self, serial: OnhandSerial) -> None:
        if self.find_serial(serial.serial_no) is not None:
            raise DuplicateSerial(f"Serial {serial.serial_no} already exists", serial_no=serial.serial_no)
        if serial.serial_no in self._serial_deletes:
            # Deleted and re-added in the same unit
            self._serial_deletes.discard(serial.serial_no)
            self._serial_updates[serial.serial_no] = serial.model_copy()
            return
        self._serial_inserts[serial.serial_no] = serial.model_copy()

    def put_serial(self, serial: OnhandSerial) -> None:
        if serial.serial_no in self._serial_inserts:
            self._serial_inserts[serial.serial_no] = serial.model_copy()
        else:
            self._serial_updates[serial.serial_no] = serial.model_copy()

    def delete_serial(self, serial_no: str) -> None:
        if self._serial_inserts.pop(serial_no, None) is not None:
            return
        self._serial_updates.pop(serial_no, None)
        self._serial_deletes.add(serial_no)

    # lots
    def get_lot(self, lot_code: str) -> Optional[OnhandLot]:
        if lot_code in self._lot_deletes:
            return None
        if lot_code in self._lot_puts:
            return self._lot_puts[lot_code].model_copy()
        found = self.store._lots.get(self.key, {}).get(lot_code)
        return found.model_copy() if found else None

    def lots(self) -> List[OnhandLot]:
        codes = set(self.store._lots.get(self.key, {})) | set(self._lot_puts)
        codes -= self._lot_deletes
        return [lot for lot in (self.get_lot(c) for c in sorted(codes)) if lot is not None]

    def put_lot(self, lot: OnhandLot) -> None:
        self._lot_deletes.discard(lot.lot_code)
        self._lot_puts[lot.lot_code] = lot.model_copy()

    def delete_lot(self, lot_code: str) -> None:
        self._lot_puts.pop(lot_code, None)
        self._lot_deletes.add(lot_code)

    # journal
    def has_posting(self, posting_id: str) -> bool:
        if posting_id in self._history_removes:
            return False
        if any(e.posting_id == posting_id for e in self._history_adds):
            return True
        return posting_id in self.store._posting_index

    def add_history(self, entry: OnhandHistoryEntry) -> None:
        self._history_removes.discard(entry.posting_id)
        self._history_adds.append(entry.model_copy())

    def remove_history(self, posting_id: str) -> None:
        self._history_adds = [e for e in self._history_adds if e.posting_id != posting_id]
        self._history_removes.add(posting_id)

    def commit(self) -> None:
        store = self.store
        with store._registry_lock:
            for serial_no in self._serial_inserts:
                if serial_no in store._serials and serial_no not in self._serial_deletes:
                    raise DuplicateSerial(f"Serial {serial_no} already exists", serial_no=serial_no)

            for serial_no in self._serial_deletes:
                removed = store._serials.pop(serial_no, None)
                if removed is not None:
                    store._serials_by_key[removed_key(removed)].discard(serial_no)
            for serial in list(self._serial_inserts.values()) + list(self._serial_updates.values()):
                store._serials[serial.serial_no] = serial
                store._serials_by_key[self.key].add(serial.serial_no)

            for posting_id in self._history_removes:
                store._posting_index.discard(posting_id)
            for entry in self._history_adds:
                store._posting_index.add(entry.posting_id)

        lots = store._lots.setdefault(self.key, {})
        for lot_code in self._lot_deletes:
            lots.pop(lot_code, None)
        lots.update(self._lot_puts)

        history = store._history.setdefault(self.key, [])
        if self._history_removes:
            history[:] = [e for e in history if e.posting_id not in self._history_removes]
        history.extend(self._history_adds)

        if self._record_dirty and self._record is not None:
            store._records[self.key] = self._record


def removed_key(serial: OnhandSerial) -> OnhandKey:
    return OnhandKey(serial.wh_code, serial.loc_code, serial.model_code)


class InMemoryOnhandStore(OnhandStore):

    def __init__(self):
        self._records: Dict[OnhandKey, OnhandRecord] = {}
        self._serials: Dict[str, OnhandSerial] = {}
        self._serials_by_key: Dict[OnhandKey, Set[str]] = defaultdict(set)
        self._lots: Dict[OnhandKey, Dict[str, OnhandLot]] = {}
        self._history: Dict[OnhandKey, List[OnhandHistoryEntry]] = {}
        self._posting_index: Set[str] = set()
        self._registry_lock = threading.Lock()

    @contextmanager
    def unit(self, key: OnhandKey) -> Iterator[OnhandUnit]:
        unit = _MemoryUnit(self, OnhandKey(*key))
        yield unit
        unit.commit()

    def get_record(self, key: OnhandKey) -> Optional[OnhandRecord]:
        record = self._records.get(OnhandKey(*key))
        return record.model_copy() if record else None

    def list_records(self, wh_code=None, loc_code=None, model_code=None) -> List[OnhandRecord]:
        records = [
            r for k, r in list(self._records.items())
            if (wh_code is None or k.wh_code == wh_code)
            and (loc_code is None or k.loc_code == loc_code)
            and (model_code is None or k.model_code == model_code)
        ]
        records.sort(key=lambda r: (r.wh_code, r.loc_code, r.model_code))
        return [r.model_copy() for r in records]

    def list_serials(self, key: OnhandKey, status: Optional[SerialStatus] = None) -> List[OnhandSerial]:
        with self._registry_lock:
            numbers = sorted(self._serials_by_key.get(OnhandKey(*key), set()))
            serials = [self._serials[n].model_copy() for n in numbers if n in self._serials]
        if status is not None:
            serials = [s for s in serials if s.status == status]
        return serials

    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]:
        with self._registry_lock:
            serial = self._serials.get(serial_no)
            return serial.model_copy() if serial else None

    def list_lots(self, key: OnhandKey) -> List[OnhandLot]:
        lots = list(self._lots.get(OnhandKey(*key), {}).values())
        return [lot.model_copy() for lot in sorted(lots, key=lambda lot: lot.lot_code)]

    def list_history(self, key=None, doc_no=None, limit: int = 100) -> List[OnhandHistoryEntry]:
        if key is not None:
            entries = list(self._history.get(OnhandKey(*key), []))
        else:
            entries = [e for rows in list(self._history.values()) for e in rows]
        if doc_no is not None:
            entries = [e for e in entries if e.doc_no == doc_no]
        # Newest first; equal timestamps keep reverse posting order
        entries.reverse()
        entries.sort(key=lambda e: e.txn_date, reverse=True)
        return [e.model_copy() for e in entries[:limit]]


class InMemoryModelCatalog(ModelCatalog):

    def __init__(self, models: Optional[List[ModelGoods]] = None):
        self._models: Dict[str, ModelGoods] = {}
        for model in models or []:
            self.add(model)

    def get(self, model_code: str) -> Optional[ModelGoods]:
        model = self._models.get(model_code)
        return model.model_copy() if model else None

    def add(self, model: ModelGoods) -> ModelGoods:
        self._models[model.model_code] = model.model_copy()
        return model


class InMemoryAuditSink(AuditSink):
    """Keeps audit events in a list; handy for inspection and tests"""

    def __init__(self):
        self.events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)
