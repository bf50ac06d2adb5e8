"""
Variance & Reconciliation Service
Inventory count snapshot, review partition, recount and adjustment posting
"""
import logging
from decimal import Decimal
from typing import List

from stockflow.core.exceptions import (
    DocumentLocked, PartialAdjustmentError, StockflowException, ValidationError,
)
from stockflow.repositories.base import ModelCatalog
from stockflow.schemas.documents import (
    CountLine, InventoryCount, LotDetails, LotEntry, SerialDetails, empty_details,
)
from stockflow.schemas.enums import (
    AdjustmentStatus, CountType, DocStatus, DocType, LedgerOperation, TrackingType,
)
from stockflow.schemas.onhand import AdjustmentOutcome, LedgerPosting, LotMovement
from stockflow.schemas.variance import VarianceSummary

from .onhand_ledger import OnhandLedger

logger = logging.getLogger(__name__)

REVIEW_STATUSES = (DocStatus.REVIEW, DocStatus.ADJUSTMENT_REQUESTED)


class ReconciliationService:

    def __init__(self, ledger: OnhandLedger, catalog: ModelCatalog):
        self.ledger = ledger
        self.catalog = catalog

    def build_count_lines(
        self,
        wh_code: str,
        count_type: CountType,
        selected_locations: List[str],
        selected_models: List[str],
    ) -> List[CountLine]:
        """
        Generate count lines from the ledger

        Full counts every position in the warehouse, By Location the selected
        locations and By Item the selected models.
        """
        count_type = CountType(count_type)
        records = self.ledger.list_onhand(wh_code=wh_code)
        if count_type == CountType.BY_LOCATION:
            records = [r for r in records if r.loc_code in set(selected_locations)]
        elif count_type == CountType.BY_ITEM:
            records = [r for r in records if r.model_code in set(selected_models)]

        lines = []
        for line_no, record in enumerate(records, start=1):
            model = self.catalog.get(record.model_code)
            lines.append(CountLine(
                line_no=line_no,
                model_code=record.model_code,
                model_name=model.model_name if model else None,
                uom=model.base_uom if model else "EA",
                tracking_type=record.tracking_type,
                loc_code=record.loc_code,
                details=empty_details(record.tracking_type),
                system_details=empty_details(record.tracking_type),
            ))
        return lines

    def snapshot(self, count: InventoryCount) -> InventoryCount:
        """Freeze system quantities (and serials/lots) at the start of counting"""
        for line in count.lines:
            record = self.ledger.get_onhand(count.wh_code, line.loc_code, line.model_code)
            line.system_qty = record.onhand_qty
            if line.tracking_type == TrackingType.SERIAL:
                serials = self.ledger.list_serials(count.wh_code, line.loc_code, line.model_code)
                line.system_details = SerialDetails(serials=[s.serial_no for s in serials])
            elif line.tracking_type == TrackingType.LOT:
                lots = self.ledger.list_lots(count.wh_code, line.loc_code, line.model_code)
                line.system_details = LotDetails(lots=[
                    LotEntry(lot_code=lot.lot_code, qty=lot.onhand_qty, expiry_date=lot.expiry_date)
                    for lot in lots if lot.onhand_qty > 0
                ])
            else:
                line.system_details = empty_details(line.tracking_type)
        logger.info(f"Snapshot taken for {count.doc_no}: {len(count.lines)} line(s)")
        return count

    def query_variance(self, count: InventoryCount) -> VarianceSummary:
        summary = VarianceSummary(ic_id=count.id, ic_no=count.doc_no, lines=count.lines)
        for line in count.lines:
            if line.variance is None:
                summary.not_counted += 1
            elif line.variance == 0:
                summary.exact += 1
            else:
                summary.discrepancy += 1
        return summary

    def flag_recount(self, count: InventoryCount, line_ids: List[str]) -> InventoryCount:
        """Mark discrepancy lines for a second counting pass"""
        if count.status not in REVIEW_STATUSES:
            raise DocumentLocked(
                f"{count.doc_no} is {count.status.value}; recounts are flagged during review",
                doc_id=count.id,
                status=count.status.value,
            )
        for line_id in line_ids:
            line = count.line(line_id)
            if line is None:
                raise ValidationError(f"Line {line_id} is not on {count.doc_no}", doc_id=count.id, line_id=line_id)
            if not line.variance:
                raise ValidationError(
                    f"Line {line.line_no} has no discrepancy to recount",
                    doc_id=count.id,
                    line_id=line_id,
                )
            if line.adjustment_status == AdjustmentStatus.POSTED:
                raise DocumentLocked(
                    f"Line {line.line_no} adjustment is already posted",
                    doc_id=count.id,
                    line_id=line_id,
                )
            line.is_recounted = True
        return count

    def reset_recount(self, count: InventoryCount) -> InventoryCount:
        """Reopen the flagged lines; the rest of the count stays as it is"""
        flagged = [line for line in count.lines if line.is_recounted]
        if not flagged:
            raise ValidationError(
                f"{count.doc_no}: flag at least one discrepancy line before requesting a recount",
                doc_id=count.id,
            )
        count.recount_round += 1
        for line in flagged:
            line.counted_qty = None
            line.details = empty_details(line.tracking_type)
            line.recount_no += 1
            line.adjustment_status = None
            line.adjustment_error = None
        return count

    def close_round(self, count: InventoryCount) -> InventoryCount:
        for line in count.lines:
            line.is_recounted = False
        return count

    def post_adjustments(self, count: InventoryCount, actor: str) -> List[AdjustmentOutcome]:
        """
        Post one ADJUST per discrepancy line

        Each line commits on its own; failures are collected rather than
        rolling back lines that already posted. Lines already marked Posted
        are skipped, so a retry only posts what is left.

        Raises:
            ValidationError: some lines are not counted yet
            PartialAdjustmentError: at least one line failed to post
        """
        not_counted = [line.line_no for line in count.lines if line.counted_qty is None]
        if not_counted:
            raise ValidationError(
                f"{count.doc_no}: {len(not_counted)} line(s) not counted",
                doc_id=count.id,
                line_nos=not_counted,
            )

        outcomes = []
        for line in count.lines:
            outcomes.append(self._post_line(count, line, actor))

        failed = [o for o in outcomes if o.status == AdjustmentStatus.FAILED]
        if failed:
            raise PartialAdjustmentError(
                f"{count.doc_no}: {len(failed)} of {len(outcomes)} adjustment line(s) failed",
                outcomes=outcomes,
                doc_id=count.id,
            )
        return outcomes

    def _post_line(self, count: InventoryCount, line: CountLine, actor: str) -> AdjustmentOutcome:
        variance = line.variance
        outcome = AdjustmentOutcome(
            line_id=line.line_id,
            line_no=line.line_no,
            model_code=line.model_code,
            loc_code=line.loc_code,
            variance=variance,
            status=AdjustmentStatus.SKIPPED,
        )
        if line.adjustment_status == AdjustmentStatus.POSTED:
            outcome.status = AdjustmentStatus.POSTED
            return outcome

        posting = self.adjustment_posting(count, line, actor)
        if posting is None:
            line.adjustment_status = AdjustmentStatus.SKIPPED
            return outcome

        try:
            outcome.onhand = self.ledger.post(posting)
        except StockflowException as e:
            logger.warning(f"{count.doc_no} line {line.line_no} adjustment failed: {e.code} {e.message}")
            line.adjustment_status = AdjustmentStatus.FAILED
            line.adjustment_error = e.message
            outcome.status = AdjustmentStatus.FAILED
            outcome.error_code = e.code
            outcome.error = e.message
            return outcome

        line.adjustment_status = AdjustmentStatus.POSTED
        line.adjustment_error = None
        outcome.status = AdjustmentStatus.POSTED
        return outcome

    @staticmethod
    def adjustment_posting(count: InventoryCount, line: CountLine, actor: str):
        """The ADJUST posting for a line, or None when nothing differs"""
        variance = line.variance
        serials_in: List[str] = []
        serials_out: List[str] = []
        lots: List[LotMovement] = []

        if line.tracking_type == TrackingType.SERIAL:
            counted = set(line.details.serials) if isinstance(line.details, SerialDetails) else set()
            system = set(line.system_details.serials) if isinstance(line.system_details, SerialDetails) else set()
            serials_in = sorted(counted - system)
            serials_out = sorted(system - counted)
        elif line.tracking_type == TrackingType.LOT:
            counted = line.details.by_lot() if isinstance(line.details, LotDetails) else {}
            system = line.system_details.by_lot() if isinstance(line.system_details, LotDetails) else {}
            expiry = {e.lot_code: e.expiry_date for e in getattr(line.details, "lots", [])}
            for lot_code in sorted(set(counted) | set(system)):
                diff = counted.get(lot_code, Decimal("0")) - system.get(lot_code, Decimal("0"))
                if diff:
                    lots.append(LotMovement(lot_code=lot_code, qty=diff, expiry_date=expiry.get(lot_code)))

        if not variance and not serials_in and not serials_out and not lots:
            return None

        return LedgerPosting(
            posting_id=f"{count.doc_no}:{line.line_id}:{LedgerOperation.ADJUST.value}",
            wh_code=count.wh_code,
            loc_code=line.loc_code,
            model_code=line.model_code,
            tracking_type=line.tracking_type,
            operation=LedgerOperation.ADJUST,
            qty=variance,
            serials=serials_in,
            removed_serials=serials_out,
            lots=lots,
            doc_type=DocType.IC,
            doc_no=count.doc_no,
            actor=actor,
            remark=f"Count variance {variance}",
        )
