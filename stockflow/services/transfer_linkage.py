"""
Transfer Linkage Service
Spawns a transfer's GI and GR and derives the transfer status from them

The export leg (GI at the source) and the import leg (GR at the
destination) are ordinary documents posting through their own transitions.
The GT never posts itself; its status is re-derived from the children, so
resync can be repeated safely after a crash between the two legs.
"""
from decimal import Decimal
from typing import Optional

from stockflow.core.clock import utcnow
from stockflow.core.exceptions import CannotCancelPostedTransfer, InvalidTransition, ValidationError
from stockflow.core.logging import get_logger
from stockflow.schemas.documents import IssueLine, ReceiptLine, TransferShortfall, empty_details
from stockflow.schemas.enums import DocEvent, DocStatus, DocType, IssueType, ReceiptType, TERMINAL_STATUSES

logger = get_logger("documents")

# Forward order of the derived statuses
GT_PROGRESS = {
    DocStatus.CREATED: 0,
    DocStatus.EXPORTING: 1,
    DocStatus.RECEIVING: 2,
    DocStatus.COMPLETED: 3,
}

DEAD_STATUSES = (DocStatus.CANCELLED, DocStatus.REJECTED)


def derive_status(gi, gr) -> DocStatus:
    """GT status implied by its children"""
    if gi is None:
        return DocStatus.CREATED
    if gi.status in DEAD_STATUSES:
        return DocStatus.CANCELLED
    if gi.status in (DocStatus.DRAFT, DocStatus.NEW):
        return DocStatus.CREATED
    if gi.status != DocStatus.COMPLETED:
        return DocStatus.EXPORTING
    if gr is None or gr.status != DocStatus.COMPLETED:
        return DocStatus.RECEIVING
    return DocStatus.COMPLETED


def has_posted(gi, gr) -> bool:
    """True once either child has touched the ledger"""
    if gi is not None and gi.status in (DocStatus.SUBMITTED, DocStatus.COMPLETED):
        return True
    return gr is not None and gr.status == DocStatus.COMPLETED


class TransferLinkage:

    def __init__(self, documents):
        self.documents = documents
        self.repo = documents.repo

    def _get_transfer(self, gt_id: str):
        gt = self.repo.get(gt_id)
        if gt.doc_type != DocType.GT.value:
            raise ValidationError(f"{gt.doc_no} is not a goods transfer", doc_id=gt.id)
        return gt

    def _child(self, doc_no: Optional[str]):
        return self.repo.get_by_no(doc_no) if doc_no else None

    def spawn_issue(self, gt_id: str, actor: str):
        """
        Create the transfer's GI from its lines

        Idempotent: an existing live GI for the transfer is linked instead of
        creating another one.
        """
        with self.documents.locks.hold(gt_id):
            gt = self._get_transfer(gt_id)
            if gt.linked_gi_no:
                return gt
            if gt.status != DocStatus.CREATED:
                raise InvalidTransition(
                    f"{gt.doc_no} is {gt.status.value}; its issue is created in Created",
                    doc_id=gt.id,
                    status=gt.status.value,
                )

            existing = [
                d for d in self.repo.list(doc_type=DocType.GI, gt_no=gt.doc_no)
                if d.status not in DEAD_STATUSES
            ]
            if existing:
                gi = existing[0]
            else:
                gi = self.documents.insert(
                    DocType.GI,
                    actor,
                    status=DocStatus.NEW,
                    wh_code=gt.wh_code,
                    issue_type=IssueType.TRANSFER,
                    dest_wh_code=gt.dest_wh_code,
                    gt_no=gt.doc_no,
                    ref_no=gt.doc_no,
                    note=f"Issue for transfer {gt.doc_no}",
                    lines=[
                        IssueLine(
                            model_code=line.model_code,
                            model_name=line.model_name,
                            uom=line.uom,
                            tracking_type=line.tracking_type,
                            loc_code=line.loc_code,
                            details=empty_details(line.tracking_type),
                            qty_planned=line.qty_transfer,
                            source_line_id=line.line_id,
                        )
                        for line in gt.lines
                    ],
                )
            gt.linked_gi_no = gi.doc_no
            gt.updated_at = utcnow()
            saved = self.repo.update(gt)
        logger.info(f"Transfer {saved.doc_no} linked to issue {gi.doc_no}")
        return saved

    def _spawn_receipt(self, gt, gi, actor: str):
        picked = {line.source_line_id: line for line in gi.lines}
        lines = []
        for line in gt.lines:
            gi_line = picked.get(line.line_id)
            if gi_line is None or not gi_line.qty_picked:
                continue
            lines.append(ReceiptLine(
                model_code=line.model_code,
                model_name=line.model_name,
                uom=line.uom,
                tracking_type=line.tracking_type,
                loc_code=line.dest_loc_code,
                details=empty_details(line.tracking_type),
                qty_planned=gi_line.qty_picked,
                source_line_id=line.line_id,
            ))
        gr = self.documents.insert(
            DocType.GR,
            actor,
            status=DocStatus.NEW,
            wh_code=gt.dest_wh_code,
            receipt_type=ReceiptType.TRANSFER,
            source_wh_code=gt.wh_code,
            gt_no=gt.doc_no,
            ref_no=gt.doc_no,
            note=f"Receipt for transfer {gt.doc_no} (issue {gi.doc_no})",
            lines=lines,
        )
        logger.info(f"Transfer {gt.doc_no} spawned receipt {gr.doc_no}")
        return gr

    def resync(self, gt_id: str, actor: str):
        """
        Re-derive the transfer from its children

        Copies exported/received quantities, spawns the GR once the GI has
        completed, moves the status forward and records shortfalls.
        """
        with self.documents.locks.hold(gt_id):
            gt = self._get_transfer(gt_id)
            if gt.status in TERMINAL_STATUSES or gt.status == DocStatus.DRAFT:
                return gt
            before = gt.model_dump()

            gi = self._child(gt.linked_gi_no)
            gr = self._child(gt.linked_gr_no)

            if gi is not None and gi.status == DocStatus.COMPLETED:
                picked = {line.source_line_id: line.qty_picked for line in gi.lines}
                for line in gt.lines:
                    line.qty_exported = picked.get(line.line_id) or Decimal("0")
                if gr is None or gr.status in DEAD_STATUSES:
                    gr = self._spawn_receipt(gt, gi, actor)
                    gt.linked_gr_no = gr.doc_no

            if gr is not None and gr.status == DocStatus.COMPLETED:
                received = {line.source_line_id: line.qty_received for line in gr.lines}
                for line in gt.lines:
                    line.qty_received = received.get(line.line_id) or Decimal("0")
                gt.shortfalls = self._shortfalls(gt)

            derived = derive_status(gi, gr)
            target = gt.status
            if derived == DocStatus.CANCELLED:
                target = DocStatus.CANCELLED
            elif GT_PROGRESS[derived] > GT_PROGRESS[gt.status]:
                target = derived

            if target != gt.status:
                now = utcnow()
                gt.status = target
                gt.history.append(self.documents._history_event(
                    gt, target, actor, now, event=DocEvent.SYNC,
                    note=_describe(gi, gr),
                ))

            if gt.model_dump() == before:
                return gt
            gt.updated_at = utcnow()
            saved = self.repo.update(gt)

        logger.info(f"Transfer {saved.doc_no} re-derived as {saved.status.value}")
        return saved

    def resync_by_no(self, gt_no: str, actor: str):
        gt = self.repo.get_by_no(gt_no)
        return self.resync(gt.id, actor) if gt else None

    @staticmethod
    def _shortfalls(gt):
        shortfalls = []
        for line in gt.lines:
            if line.shortfall_qty:
                shortfall = TransferShortfall(
                    line_id=line.line_id,
                    line_no=line.line_no,
                    model_code=line.model_code,
                    expected_qty=line.qty_exported if line.qty_exported is not None else line.qty_transfer,
                    received_qty=line.qty_received,
                    shortfall_qty=line.shortfall_qty,
                )
                logger.warning(
                    f"Transfer {gt.doc_no} line {line.line_no} ({line.model_code}): "
                    f"expected {shortfall.expected_qty}, received {shortfall.received_qty}"
                )
                shortfalls.append(shortfall)
        return shortfalls

    def cancel_children(self, gt, actor: str) -> None:
        """
        Cancel the transfer's GI/GR ahead of cancelling the transfer

        Raises:
            CannotCancelPostedTransfer: a child already has a ledger effect
        """
        gi = self._child(gt.linked_gi_no)
        gr = self._child(gt.linked_gr_no)
        if has_posted(gi, gr):
            raise CannotCancelPostedTransfer(
                f"{gt.doc_no} has posted stock movements; reverse its issue/receipt first",
                doc_id=gt.id,
                gi_no=gi.doc_no if gi else None,
                gi_status=gi.status.value if gi else None,
                gr_no=gr.doc_no if gr else None,
                gr_status=gr.status.value if gr else None,
            )
        for child in (gr, gi):
            if child is not None and child.status not in TERMINAL_STATUSES:
                self.documents.transition(
                    child.id, DocEvent.CANCEL, actor,
                    note=f"Transfer {gt.doc_no} cancelled", sync_links=False,
                )


def _describe(gi, gr) -> str:
    parts = []
    if gi is not None:
        parts.append(f"{gi.doc_no} {gi.status.value}")
    if gr is not None:
        parts.append(f"{gr.doc_no} {gr.status.value}")
    return "Derived from " + (", ".join(parts) if parts else "no linked documents")
