"""
Inventory Engine
Single entry point wiring the ledger, documents, counts and transfers
"""
import logging
import time
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockflow.core.config import Settings, settings as default_settings
from stockflow.core.database import check_db_connection, create_db_engine, init_db
from stockflow.core.exceptions import ModelNotFound, ValidationError
from stockflow.repositories.base import (
    AuditSink, DocumentRepository, ModelCatalog, OnhandStore,
)
from stockflow.repositories.memory import (
    InMemoryAuditSink, InMemoryDocumentRepository, InMemoryModelCatalog, InMemoryOnhandStore,
)
from stockflow.repositories.sql import (
    SqlAuditSink, SqlDocumentRepository, SqlModelCatalog, SqlOnhandStore,
)
from stockflow.schemas.documents import ActualsInput, DocumentCreate, LineInput
from stockflow.schemas.enums import DocEvent, DocType
from stockflow.schemas.master import ModelGoods
from stockflow.schemas.onhand import OnhandRecord
from stockflow.schemas.variance import VarianceSummary

from .audit import AuditTrail
from .document_service import DocumentService
from .onhand_ledger import OnhandLedger
from .reconciliation import ReconciliationService
from .tracking_resolver import TrackingResolver
from .transfer_linkage import TransferLinkage

logger = logging.getLogger(__name__)


class InventoryEngine:
    """Operations exposed to the API layer and any other caller"""

    def __init__(
        self,
        documents: DocumentService,
        ledger: OnhandLedger,
        reconciliation: ReconciliationService,
        linkage: TransferLinkage,
        catalog: ModelCatalog,
        audit: AuditTrail,
        bind: Optional[Engine] = None,
    ):
        self.documents = documents
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.linkage = linkage
        self.catalog = catalog
        self.audit = audit
        # Database engine for the SQL backend, None in memory
        self.bind = bind

    def storage_ok(self) -> bool:
        if self.bind is None:
            return True
        return check_db_connection(self.bind)

    # Master data

    def register_model(self, model: ModelGoods) -> ModelGoods:
        return self.catalog.add(model)

    def get_model(self, model_code: str) -> ModelGoods:
        model = self.catalog.get(model_code)
        if model is None:
            raise ModelNotFound(f"Model {model_code} not found", model_code=model_code)
        return model

    # Documents

    def create_document(self, request: DocumentCreate, actor: str):
        return self.documents.create(request, actor)

    def update_lines(self, doc_id: str, lines: List[LineInput], actor: str):
        return self.documents.update_lines(doc_id, lines, actor)

    def record_line_actuals(self, doc_id: str, line_id: str, actuals: ActualsInput, actor: str):
        return self.documents.record_line_actuals(doc_id, line_id, actuals, actor)

    def transition(self, doc_id: str, event: DocEvent, actor: str, note: Optional[str] = None):
        return self.documents.transition(doc_id, event, actor, note)

    def get_document(self, doc_id: str):
        return self.documents.get(doc_id)

    def list_documents(self, doc_type=None, status=None, wh_code=None, gt_no=None):
        return self.documents.list(doc_type=doc_type, status=status, wh_code=wh_code, gt_no=gt_no)

    def pending_actions(self, wh_code: Optional[str] = None):
        return self.documents.pending_actions(wh_code)

    # Ledger

    def get_onhand(self, wh_code: str, loc_code: str, model_code: str) -> OnhandRecord:
        return self.ledger.get_onhand(wh_code, loc_code, model_code)

    def list_onhand(self, wh_code=None, loc_code=None, model_code=None) -> List[OnhandRecord]:
        return self.ledger.list_onhand(wh_code, loc_code, model_code)

    def list_serials(self, wh_code: str, loc_code: str, model_code: str, status=None):
        return self.ledger.list_serials(wh_code, loc_code, model_code, status)

    def list_lots(self, wh_code: str, loc_code: str, model_code: str):
        return self.ledger.list_lots(wh_code, loc_code, model_code)

    def onhand_history(self, wh_code=None, loc_code=None, model_code=None, doc_no=None, limit: int = 100):
        return self.ledger.history(wh_code, loc_code, model_code, doc_no=doc_no, limit=limit)

    # Counts

    def _count(self, ic_id: str):
        count = self.documents.get(ic_id)
        if count.doc_type != DocType.IC.value:
            raise ValidationError(f"{count.doc_no} is not an inventory count", doc_id=ic_id)
        return count

    def query_variance(self, ic_id: str) -> VarianceSummary:
        return self.reconciliation.query_variance(self._count(ic_id))

    def flag_recount(self, ic_id: str, line_ids: List[str], actor: str):
        with self.documents.locks.hold(ic_id):
            count = self.reconciliation.flag_recount(self._count(ic_id), line_ids)
            saved = self.documents.repo.update(count)
        self.audit.record(actor, "flag_recount", saved, line_ids=line_ids)
        return saved

    # Transfers

    def spawn_transfer_issue(self, gt_id: str, actor: str):
        return self.linkage.spawn_issue(gt_id, actor)

    def resync_transfer(self, gt_id: str, actor: str):
        return self.linkage.resync(gt_id, actor)


def build_engine(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    models: Optional[List[ModelGoods]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> InventoryEngine:
    """
    Wire an engine for the configured storage backend

    Args:
        settings: Settings to use (the module settings by default)
        session_factory: Session factory for the SQL backend; built from
            DATABASE_URL when omitted
        models: Model master rows to register up front
        sleep: Backoff sleep, replaceable in tests
    """
    settings = settings or default_settings

    repo: DocumentRepository
    store: OnhandStore
    catalog: ModelCatalog
    sink: AuditSink
    bind: Optional[Engine] = None
    if settings.STORAGE_BACKEND == "sql":
        if session_factory is None:
            bind = create_db_engine(settings.DATABASE_URL, settings.DATABASE_ECHO)
            init_db(bind)
            session_factory = sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)
        else:
            bind = session_factory.kw.get("bind")
        repo = SqlDocumentRepository(session_factory)
        store = SqlOnhandStore(session_factory)
        catalog = SqlModelCatalog(session_factory)
        sink = SqlAuditSink(session_factory)
    else:
        repo = InMemoryDocumentRepository()
        store = InMemoryOnhandStore()
        catalog = InMemoryModelCatalog()
        sink = InMemoryAuditSink()

    for model in models or []:
        catalog.add(model)

    ledger = OnhandLedger(
        store,
        lock_timeout=settings.LEDGER_LOCK_TIMEOUT,
        retry_budget=settings.LEDGER_RETRY_BUDGET,
        retry_backoff=settings.LEDGER_RETRY_BACKOFF,
        retry_max_backoff=settings.LEDGER_RETRY_MAX_BACKOFF,
        near_expiry_days=settings.NEAR_EXPIRY_DAYS,
        sleep=sleep,
    )
    audit = AuditTrail(sink)
    reconciliation = ReconciliationService(ledger, catalog)
    documents = DocumentService(
        repo,
        ledger,
        TrackingResolver(store),
        catalog,
        audit,
        reconciliation,
        lock_timeout=settings.DOCUMENT_LOCK_TIMEOUT,
        doc_no_pattern=settings.DOC_NO_PATTERN,
        decimal_places=settings.QUANTITY_DECIMAL_PLACES,
    )
    linkage = TransferLinkage(documents)
    documents.linkage = linkage

    logger.info(f"Inventory engine ready ({settings.STORAGE_BACKEND} backend)")
    return InventoryEngine(documents, ledger, reconciliation, linkage, catalog, audit, bind=bind)
