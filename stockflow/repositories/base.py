"""
Storage collaborator interfaces

The engine never owns storage: documents, the onhand ledger, the model master
and the audit trail are reached through these interfaces. In-memory and
SQLAlchemy implementations live alongside.
"""
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import List, Optional

from stockflow.schemas.enums import DocStatus, DocType, SerialStatus
from stockflow.schemas.master import AuditEvent, ModelGoods
from stockflow.schemas.onhand import (
    OnhandHistoryEntry, OnhandKey, OnhandLot, OnhandRecord, OnhandSerial,
)


class DocumentRepository(ABC):
    """Documents keyed by id, with embedded lines and history"""

    @abstractmethod
    def add(self, document):
        """Store a new document and return the stored copy"""

    @abstractmethod
    def get(self, doc_id: str):
        """Return a copy of the document or raise DocumentNotFound"""

    @abstractmethod
    def get_by_no(self, doc_no: str):
        """Return a copy of the document with this number, or None"""

    @abstractmethod
    def update(self, document):
        """
        Replace the stored document

        The caller's ``version`` must match the stored one
        (ConcurrentModification otherwise); the stored copy gets version + 1.
        """

    @abstractmethod
    def list(
        self,
        doc_type: Optional[DocType] = None,
        status: Optional[DocStatus] = None,
        wh_code: Optional[str] = None,
        gt_no: Optional[str] = None,
    ) -> List:
        """Documents matching every given filter, newest first"""

    @abstractmethod
    def next_sequence(self, doc_type: DocType, period: str) -> int:
        """Next number in the (doc_type, period) sequence, starting at 1"""


class OnhandUnit(ABC):
    """
    Staged changes to a single ledger key

    Everything written through a unit becomes visible together when the
    owning ``OnhandStore.unit`` context exits cleanly, and is discarded when
    it exits with an exception.
    """

    key: OnhandKey

    @abstractmethod
    def get_record(self) -> Optional[OnhandRecord]: ...

    @abstractmethod
    def put_record(self, record: OnhandRecord) -> None: ...

    @abstractmethod
    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]:
        """Look a serial up anywhere in the ledger"""

    @abstractmethod
    def serials(self) -> List[OnhandSerial]:
        """Serials held at this key"""

    @abstractmethod
    def add_serial(self, serial: OnhandSerial) -> None:
        """Insert a serial; DuplicateSerial if it already exists anywhere"""

    @abstractmethod
    def put_serial(self, serial: OnhandSerial) -> None:
        """Update an existing serial at this key"""

    @abstractmethod
    def delete_serial(self, serial_no: str) -> None: ...

    @abstractmethod
    def get_lot(self, lot_code: str) -> Optional[OnhandLot]: ...

    @abstractmethod
    def lots(self) -> List[OnhandLot]: ...

    @abstractmethod
    def put_lot(self, lot: OnhandLot) -> None: ...

    @abstractmethod
    def delete_lot(self, lot_code: str) -> None: ...

    @abstractmethod
    def has_posting(self, posting_id: str) -> bool: ...

    @abstractmethod
    def add_history(self, entry: OnhandHistoryEntry) -> None: ...

    @abstractmethod
    def remove_history(self, posting_id: str) -> None: ...


class OnhandStore(ABC):
    """Authoritative per-(wh, loc, model) quantity store"""

    @abstractmethod
    def unit(self, key: OnhandKey) -> AbstractContextManager:
        """Context manager yielding an OnhandUnit for key"""

    @abstractmethod
    def get_record(self, key: OnhandKey) -> Optional[OnhandRecord]: ...

    @abstractmethod
    def list_records(
        self,
        wh_code: Optional[str] = None,
        loc_code: Optional[str] = None,
        model_code: Optional[str] = None,
    ) -> List[OnhandRecord]: ...

    @abstractmethod
    def list_serials(self, key: OnhandKey, status: Optional[SerialStatus] = None) -> List[OnhandSerial]: ...

    @abstractmethod
    def find_serial(self, serial_no: str) -> Optional[OnhandSerial]: ...

    @abstractmethod
    def list_lots(self, key: OnhandKey) -> List[OnhandLot]: ...

    @abstractmethod
    def list_history(
        self,
        key: Optional[OnhandKey] = None,
        doc_no: Optional[str] = None,
        limit: int = 100,
    ) -> List[OnhandHistoryEntry]:
        """Movement journal, newest first"""


class ModelCatalog(ABC):
    """Model (item) master"""

    @abstractmethod
    def get(self, model_code: str) -> Optional[ModelGoods]: ...

    @abstractmethod
    def add(self, model: ModelGoods) -> ModelGoods: ...


class AuditSink(ABC):
    """Append-only destination for audit events"""

    @abstractmethod
    def record(self, event: AuditEvent) -> None: ...
