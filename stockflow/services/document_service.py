"""
Document Service
Creation, line editing, actuals and status transitions for GR/GI/GT/IC
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from stockflow.core.clock import utcnow
from stockflow.core.exceptions import (
    DocumentBusy, DocumentLocked, InvalidTransition, PartialAdjustmentError,
    StockflowException, ValidationError, ValidationFailed,
)
from stockflow.core.locks import KeyLockManager
from stockflow.core.logging import get_logger
from stockflow.repositories.base import DocumentRepository, ModelCatalog
from stockflow.schemas.documents import (
    DOCUMENT_CLASSES, ActualsInput, CountLine, DocumentCreate, IssueLine,
    LineInput, PendingAction, ReceiptLine, StatusHistoryEvent, TransferLine,
    empty_details,
)
from stockflow.schemas.enums import (
    AdjustmentStatus, CountType, DetailOperation, DocEvent, DocStatus, DocType,
    IssueType, LedgerOperation, PRE_POSTING_STATUSES, ReceiptType,
)
from stockflow.schemas.onhand import LedgerPosting, LotMovement

from .audit import AuditTrail
from .onhand_ledger import OnhandLedger
from .reconciliation import ReconciliationService
from .state_machine import DocumentStateMachine, Effect
from .tracking_resolver import TrackingResolver

logger = get_logger("documents")

LINE_CLASSES = {
    DocType.GR: ReceiptLine,
    DocType.GI: IssueLine,
    DocType.GT: TransferLine,
    DocType.IC: CountLine,
}

# Status in which actual quantities are recorded
WORKING_STATUS = {
    DocType.GR: DocStatus.RECEIVING,
    DocType.GI: DocStatus.PICKING,
    DocType.IC: DocStatus.COUNTING,
}

DETAIL_OPERATION = {
    DocType.GR: DetailOperation.RECEIPT,
    DocType.GI: DetailOperation.ISSUE,
    DocType.IC: DetailOperation.COUNT,
}

# Statuses that need someone to act on the document
PENDING_STATUSES = {
    DocType.GR: (DocStatus.DRAFT, DocStatus.SUBMITTED),
    DocType.GI: (DocStatus.DRAFT, DocStatus.SUBMITTED, DocStatus.ADJUSTMENT_REQUESTED),
    DocType.IC: (DocStatus.REVIEW, DocStatus.ADJUSTMENT_REQUESTED),
}


class DocumentService:
    """
    Owns every document write

    Transitions on one document are serialized by a per-document lock. The
    side effect of a transition runs against a working copy; the status,
    history and copy are stored only after the effect succeeded, so a
    rejected transition leaves the stored document untouched.
    """

    def __init__(
        self,
        repo: DocumentRepository,
        ledger: OnhandLedger,
        resolver: TrackingResolver,
        catalog: ModelCatalog,
        audit: AuditTrail,
        reconciliation: ReconciliationService,
        machine: Optional[DocumentStateMachine] = None,
        lock_timeout: float = 5.0,
        doc_no_pattern: str = "{doc_type}-{period}-{seq:03d}",
        decimal_places: int = 3,
    ):
        self.repo = repo
        self.ledger = ledger
        self.resolver = resolver
        self.catalog = catalog
        self.audit = audit
        self.reconciliation = reconciliation
        self.machine = machine or DocumentStateMachine()
        self.locks = KeyLockManager("document", lock_timeout, DocumentBusy)
        self.doc_no_pattern = doc_no_pattern
        self.quantum = Decimal(1).scaleb(-decimal_places)
        # Set by the engine once the transfer linkage exists
        self.linkage = None

    # Helpers

    def quantize(self, qty) -> Decimal:
        return Decimal(qty).quantize(self.quantum)

    def next_doc_no(self, doc_type: DocType, now=None) -> str:
        period = (now or utcnow()).strftime("%Y%m")
        seq = self.repo.next_sequence(doc_type, period)
        return self.doc_no_pattern.format(doc_type=DocType(doc_type).value, period=period, seq=seq)

    def _history_event(self, doc, status: DocStatus, actor: str, now, event=None, note=None):
        return StatusHistoryEvent(doc_id=doc.id, status=status, user=actor, timestamp=now, event=event, note=note)

    # Creation

    def insert(self, doc_type: DocType, actor: str, status: Optional[DocStatus] = None, **fields: Any):
        """Number, stamp and store a document built from ready-made fields"""
        doc_type = DocType(doc_type)
        now = utcnow()
        status = status or self.machine.initial_status(doc_type)
        lines = fields.pop("lines", [])
        for line_no, line in enumerate(lines, start=1):
            line.line_no = line_no
        doc = DOCUMENT_CLASSES[doc_type](
            doc_no=self.next_doc_no(doc_type, now),
            status=status,
            created_at=now,
            updated_at=now,
            created_by=actor,
            lines=lines,
            **fields,
        )
        doc.history.append(self._history_event(doc, status, actor, now, note="Document created."))
        saved = self.repo.add(doc)
        self.audit.record(actor, "create", saved, status_to=saved.status)
        return saved

    def create(self, request: DocumentCreate, actor: str):
        """
        Create a document in its initial status (or Draft)

        Raises:
            ValidationFailed: header or line errors, all of them at once
        """
        doc_type = DocType(request.doc_type)
        errors = self._validate_header(request)
        lines, line_errors = self._build_lines(doc_type, request.lines)
        errors.extend(line_errors)
        if doc_type != DocType.IC and not request.as_draft and not request.lines:
            errors.append({"field": "lines", "message": "At least one line is required"})
        if errors:
            raise ValidationFailed(errors)

        fields: Dict[str, Any] = {
            "wh_code": request.wh_code,
            "partner_code": request.partner_code,
            "ref_no": request.ref_no,
            "note": request.note,
        }
        if doc_type == DocType.GR:
            fields["receipt_type"] = request.receipt_type or ReceiptType.PO
        elif doc_type == DocType.GI:
            fields["issue_type"] = request.issue_type or IssueType.SALES_ORDER
            fields["dest_wh_code"] = request.dest_wh_code
        elif doc_type == DocType.GT:
            fields["dest_wh_code"] = request.dest_wh_code
            fields["expected_date"] = request.expected_date
        else:
            fields["count_type"] = request.count_type or CountType.FULL
            fields["selected_locations"] = request.selected_locations
            fields["selected_models"] = request.selected_models
            if not lines:
                lines = self.reconciliation.build_count_lines(
                    request.wh_code, fields["count_type"], request.selected_locations, request.selected_models,
                )

        doc = self.insert(
            doc_type,
            actor,
            status=self.machine.initial_status(doc_type, request.as_draft),
            lines=lines,
            **fields,
        )
        logger.info(f"{actor} created {doc.doc_no} ({doc.status.value}) with {len(doc.lines)} line(s)")

        if doc_type == DocType.GT and doc.status == DocStatus.CREATED and request.spawn_issue:
            doc = self.linkage.spawn_issue(doc.id, actor)
        return doc

    def _validate_header(self, request: DocumentCreate) -> List[Dict[str, Any]]:
        errors = []
        if request.doc_type == DocType.GT and not request.dest_wh_code:
            errors.append({"field": "dest_wh_code", "message": "Destination warehouse is required"})
        if request.doc_type == DocType.IC:
            if request.count_type == CountType.BY_LOCATION and not request.selected_locations and not request.lines:
                errors.append({"field": "selected_locations", "message": "Select at least one location"})
            if request.count_type == CountType.BY_ITEM and not request.selected_models and not request.lines:
                errors.append({"field": "selected_models", "message": "Select at least one model"})
        return errors

    def _build_lines(self, doc_type: DocType, inputs: List[LineInput], existing=None):
        """Turn line input into typed lines; returns (lines, errors)"""
        existing = {line.line_id: line for line in (existing or [])}
        line_cls = LINE_CLASSES[doc_type]
        lines, errors = [], []
        counted_keys: Dict[tuple, int] = {}
        flagged = set()

        for line_no, item in enumerate(inputs, start=1):
            line_errors = []
            model = self.catalog.get(item.model_code) if item.model_code else None
            if not item.model_code:
                line_errors.append({"field": "model_code", "message": "Model is required"})
            elif model is None or not model.is_active:
                line_errors.append({"field": "model_code", "message": f"Unknown or inactive model {item.model_code}"})
            if not item.loc_code:
                line_errors.append({"field": "loc_code", "message": "Location is required"})
            if doc_type == DocType.GT and not item.dest_loc_code:
                line_errors.append({"field": "dest_loc_code", "message": "Destination location is required"})
            if doc_type != DocType.IC and item.qty_planned <= 0:
                line_errors.append({"field": "qty_planned", "message": "Quantity must be greater than zero"})
            if line_errors:
                for error in line_errors:
                    errors.append({"line_no": line_no, "line_id": item.line_id, **error})
                continue

            fields: Dict[str, Any] = {
                "line_no": line_no,
                "model_code": model.model_code,
                "model_name": model.model_name,
                "uom": item.uom or model.base_uom,
                "tracking_type": model.tracking_type,
                "loc_code": item.loc_code,
                "details": empty_details(model.tracking_type),
            }
            if item.line_id and item.line_id in existing:
                fields["line_id"] = item.line_id
            if doc_type == DocType.GT:
                fields["dest_loc_code"] = item.dest_loc_code
                fields["qty_transfer"] = self.quantize(item.qty_planned)
            elif doc_type == DocType.IC:
                # One count line per ledger key
                first_no = counted_keys.setdefault((item.loc_code, model.model_code), line_no)
                if first_no != line_no:
                    message = f"{model.model_code} at {item.loc_code} is counted on lines {first_no} and {line_no}"
                    for dup_no in (first_no, line_no):
                        if dup_no in flagged:
                            continue
                        flagged.add(dup_no)
                        errors.append({
                            "line_no": dup_no, "line_id": inputs[dup_no - 1].line_id,
                            "field": "model_code", "message": message,
                        })
                    continue
                fields["system_details"] = empty_details(model.tracking_type)
            else:
                fields["qty_planned"] = self.quantize(item.qty_planned)
            lines.append(line_cls(**fields))
        return lines, errors

    # Line edits

    def update_lines(self, doc_id: str, inputs: List[LineInput], actor: str):
        """
        Replace a document's lines

        Raises:
            DocumentLocked: the document is past its pre-posting statuses or
                its lines mirror a transfer
            ValidationFailed: line errors, all of them at once
        """
        with self.locks.hold(doc_id):
            doc = self.repo.get(doc_id)
            if doc.status not in PRE_POSTING_STATUSES:
                raise DocumentLocked(
                    f"{doc.doc_no} is {doc.status.value}; lines can only be edited in Draft, New or Created",
                    doc_id=doc.id,
                    status=doc.status.value,
                )
            if getattr(doc, "gt_no", None) or getattr(doc, "linked_gi_no", None):
                raise DocumentLocked(
                    f"{doc.doc_no} lines follow transfer linkage and cannot be edited",
                    doc_id=doc.id,
                )

            lines, errors = self._build_lines(DocType(doc.doc_type), inputs, existing=doc.lines)
            if errors:
                raise ValidationFailed(errors, doc_id=doc.id)

            doc.lines = lines
            doc.updated_at = utcnow()
            saved = self.repo.update(doc)
        self.audit.record(actor, "update_lines", saved, lines=len(lines))
        return saved

    def record_line_actuals(self, doc_id: str, line_id: str, actuals: ActualsInput, actor: str):
        """
        Record received / picked / counted quantity and details for one line

        Details are checked by the tracking resolver straight away.
        """
        with self.locks.hold(doc_id):
            doc = self.repo.get(doc_id)
            doc_type = DocType(doc.doc_type)
            working = WORKING_STATUS.get(doc_type)
            if working is None:
                raise DocumentLocked(
                    f"{doc.doc_no}: transfer quantities follow its issue and receipt",
                    doc_id=doc.id,
                )
            if doc.status != working:
                raise DocumentLocked(
                    f"{doc.doc_no} is {doc.status.value}; actuals are recorded in {working.value}",
                    doc_id=doc.id,
                    status=doc.status.value,
                )

            line = doc.line(line_id)
            if line is None:
                raise ValidationError(f"Line {line_id} is not on {doc.doc_no}", doc_id=doc.id, line_id=line_id)
            if doc_type == DocType.IC and doc.recount_round and not line.is_recounted:
                raise DocumentLocked(
                    f"Line {line.line_no} is not flagged for recount",
                    doc_id=doc.id,
                    line_id=line_id,
                )

            qty = self.quantize(actuals.qty)
            if doc_type == DocType.GI and qty > line.qty_planned:
                raise ValidationError(
                    f"Line {line.line_no}: picked {qty} exceeds planned {line.qty_planned}",
                    doc_id=doc.id,
                    line_id=line_id,
                    qty=qty,
                    qty_planned=line.qty_planned,
                )
            details = actuals.details if actuals.details is not None else empty_details(line.tracking_type)
            self.resolver.validate_details(
                line, line.tracking_type, qty, details, DETAIL_OPERATION[doc_type],
                doc.wh_code, line.loc_code, doc.doc_no,
            )

            line.set_actual(qty, details)
            doc.updated_at = utcnow()
            saved = self.repo.update(doc)
        logger.info(f"{actor} recorded {qty} on {saved.doc_no} line {line.line_no}")
        return saved

    # Transitions

    def transition(self, doc_id: str, event: DocEvent, actor: str, note: Optional[str] = None, sync_links: bool = True):
        """
        Apply an event to a document

        Args:
            doc_id: Document id
            event: Event to apply
            actor: Caller identity, written to history and audit
            note: Free-text note; required for reject
            sync_links: Re-derive the parent transfer afterwards

        Returns:
            The stored document after the transition

        Raises:
            InvalidTransition, DocumentLocked, DetailError, LedgerError,
            PartialAdjustmentError, CannotCancelPostedTransfer
        """
        event = DocEvent(event)
        with self.locks.hold(doc_id):
            doc = self.repo.get(doc_id)
            try:
                rule = self.machine.resolve(doc.doc_type, doc.status, event)
                if rule.note_required and not (note and note.strip()):
                    raise ValidationError(f"A note is required to {event.value} {doc.doc_no}", doc_id=doc.id)
                if rule.effect == Effect.RESYNC:
                    saved = self.linkage.resync(doc.id, actor)
                else:
                    saved = self._apply(doc, rule, event, actor, note)
            except StockflowException as e:
                self.audit.record(
                    actor, event.value, doc, success=False,
                    status_from=doc.status, error=e.message, code=e.code,
                )
                raise

        self.audit.record(actor, event.value, saved, status_from=doc.status, status_to=saved.status, note=note)
        if sync_links and self.linkage is not None and getattr(saved, "gt_no", None):
            try:
                self.linkage.resync_by_no(saved.gt_no, actor)
            except StockflowException as e:
                logger.warning(f"Transfer {saved.gt_no} not re-derived after {saved.doc_no} {event.value}: {e.message}")
        return saved

    def _apply(self, doc, rule, event: DocEvent, actor: str, note: Optional[str]):
        working = doc.model_copy(deep=True)
        effect = rule.effect

        if event == DocEvent.CANCEL and doc.doc_type == DocType.IC.value and any(
            line.adjustment_status == AdjustmentStatus.POSTED for line in doc.lines
        ):
            raise InvalidTransition(
                f"{doc.doc_no} has posted adjustments and cannot be cancelled",
                doc_id=doc.id,
            )

        applied: List[LedgerPosting] = []
        try:
            applied = self._run_effect(effect, working, actor)
        except PartialAdjustmentError:
            # Per-line outcomes are kept; status stays where it was
            working.updated_at = utcnow()
            self.repo.update(working)
            raise

        now = utcnow()
        working.status = rule.target
        working.updated_at = now
        working.history.append(self._history_event(working, rule.target, actor, now, event=event, note=note))
        try:
            saved = self.repo.update(working)
        except StockflowException:
            if applied:
                self.ledger.compensate(applied)
            raise

        logger.info(f"{actor} moved {saved.doc_no} {doc.status.value} -> {saved.status.value} ({event.value})")
        if effect == Effect.SPAWN_ISSUE:
            saved = self.linkage.spawn_issue(saved.id, actor)
        return saved

    def _run_effect(self, effect: Effect, doc, actor: str) -> List[LedgerPosting]:
        """Run a transition's side effect on the working copy; returns applied postings"""
        if effect == Effect.VALIDATE_RECEIPT:
            self._validate_actuals(doc, DetailOperation.RECEIPT)
        elif effect == Effect.POST_RECEIPT:
            return self._post_lines(doc, LedgerOperation.RECEIVE, actor)
        elif effect == Effect.RESERVE_ISSUE:
            self._validate_actuals(doc, DetailOperation.ISSUE)
            return self._post_lines(doc, LedgerOperation.RESERVE, actor)
        elif effect == Effect.CONSUME_ISSUE:
            return self._post_lines(doc, LedgerOperation.CONSUME, actor)
        elif effect == Effect.RELEASE_ISSUE:
            return self._post_lines(doc, LedgerOperation.RELEASE, actor)
        elif effect == Effect.SNAPSHOT_COUNT:
            self.reconciliation.snapshot(doc)
        elif effect == Effect.CLOSE_ROUND:
            self.reconciliation.close_round(doc)
        elif effect == Effect.RESET_RECOUNT:
            self.reconciliation.reset_recount(doc)
        elif effect == Effect.POST_COUNT:
            self.reconciliation.post_adjustments(doc, actor)
        elif effect == Effect.CASCADE_CANCEL:
            self.linkage.cancel_children(doc, actor)
        return []

    def _validate_actuals(self, doc, operation: DetailOperation) -> None:
        missing = [
            {"line_no": line.line_no, "line_id": line.line_id, "field": line.ACTUAL_FIELD,
             "message": "Actual quantity not recorded"}
            for line in doc.lines if line.actual_qty is None
        ]
        if missing:
            raise ValidationFailed(missing, doc_id=doc.id)
        self.resolver.validate_unique_serials(doc.lines)
        for line in doc.lines:
            self.resolver.validate_details(
                line, line.tracking_type, line.actual_qty, line.details, operation,
                doc.wh_code, line.loc_code, doc.doc_no,
            )

    def _post_lines(self, doc, operation: LedgerOperation, actor: str) -> List[LedgerPosting]:
        postings = [
            line_posting(doc, line, operation, actor)
            for line in doc.lines
            if line.actual_qty
        ]
        self.ledger.post_all(postings)
        return postings

    # Queries

    def get(self, doc_id: str):
        return self.repo.get(doc_id)

    def list(self, doc_type=None, status=None, wh_code=None, gt_no=None):
        return self.repo.list(doc_type=doc_type, status=status, wh_code=wh_code, gt_no=gt_no)

    def pending_actions(self, wh_code: Optional[str] = None) -> List[PendingAction]:
        """Documents waiting on someone, newest first"""
        docs = []
        for doc_type, statuses in PENDING_STATUSES.items():
            for status in statuses:
                docs.extend(self.repo.list(doc_type=doc_type, status=status, wh_code=wh_code))
        docs.sort(key=lambda d: (d.created_at, d.doc_no), reverse=True)
        return [
            PendingAction(
                doc_id=d.id, doc_type=d.doc_type, doc_no=d.doc_no, status=d.status,
                created_at=d.created_at, created_by=d.created_by,
            )
            for d in docs
        ]


def line_posting(doc, line, operation: LedgerOperation, actor: str) -> LedgerPosting:
    """Ledger posting for a GR/GI line's actual quantity"""
    lots = [
        LotMovement(lot_code=lot.lot_code, qty=lot.qty, expiry_date=lot.expiry_date)
        for lot in getattr(line.details, "lots", [])
    ]
    return LedgerPosting(
        posting_id=f"{doc.doc_no}:{line.line_id}:{operation.value}",
        wh_code=doc.wh_code,
        loc_code=line.loc_code,
        model_code=line.model_code,
        tracking_type=line.tracking_type,
        operation=operation,
        qty=line.actual_qty,
        serials=list(getattr(line.details, "serials", [])),
        lots=lots,
        doc_type=DocType(doc.doc_type),
        doc_no=doc.doc_no,
        actor=actor,
        remark=f"{doc.doc_type} line {line.line_no}",
    )

