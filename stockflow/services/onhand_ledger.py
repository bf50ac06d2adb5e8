"""
Onhand Ledger Service
Applies quantity deltas to (warehouse, location, model) records

Every posting runs inside the key's critical section and a single store unit,
so concurrent postings to one key serialize while disjoint keys proceed in
parallel. Postings carry a deterministic posting_id recorded in the movement
journal; re-applying a journaled posting is a no-op.
"""
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from stockflow.core.clock import utcnow
from stockflow.core.exceptions import (
    CompensationFailed, InsufficientLotQty, InsufficientStock, LedgerBusy,
    LotQtyMismatch, SerialNotAvailable, SerialQtyMismatch, StockflowException,
    ValidationError,
)
from stockflow.core.locks import KeyLockManager, call_with_retry
from stockflow.core.logging import get_logger
from stockflow.repositories.base import OnhandStore, OnhandUnit
from stockflow.schemas.documents import new_id
from stockflow.schemas.enums import LedgerOperation, SerialStatus, TrackingType
from stockflow.schemas.onhand import (
    OPERATION_SIGNS, LedgerPosting, OnhandHistoryEntry, OnhandKey, OnhandLot,
    OnhandRecord, OnhandSerial,
)

logger = get_logger("ledger")

ZERO = Decimal("0")


def infer_operation(qty_delta: Decimal, allocated_delta: Decimal) -> LedgerOperation:
    """Journal operation for a raw (onhand, allocated) delta"""
    if allocated_delta == 0:
        return LedgerOperation.RECEIVE if qty_delta > 0 else LedgerOperation.ADJUST
    if qty_delta == 0:
        return LedgerOperation.RESERVE if allocated_delta > 0 else LedgerOperation.RELEASE
    if qty_delta < 0 and qty_delta == allocated_delta:
        return LedgerOperation.CONSUME
    return LedgerOperation.ADJUST


class OnhandLedger:
    """Authoritative onhand quantities with serial and lot detail"""

    def __init__(
        self,
        store: OnhandStore,
        lock_timeout: float = 2.0,
        retry_budget: int = 3,
        retry_backoff: float = 0.05,
        retry_max_backoff: float = 1.0,
        near_expiry_days: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.locks = KeyLockManager("ledger", lock_timeout, LedgerBusy)
        self.retry_budget = retry_budget
        self.retry_backoff = retry_backoff
        self.retry_max_backoff = retry_max_backoff
        self.near_expiry_days = near_expiry_days
        self._sleep = sleep

    # Postings

    def apply_delta(
        self,
        wh_code: str,
        loc_code: str,
        model_code: str,
        qty_delta: Decimal,
        allocated_delta: Decimal = ZERO,
        posting_id: Optional[str] = None,
        actor: str = "SYSTEM",
        remark: Optional[str] = None,
    ) -> OnhandRecord:
        """
        Apply a raw delta to an untracked key

        Serial and lot keys must move through ``post`` with their detail rows,
        otherwise the detail invariants reject the delta.
        """
        qty_delta = Decimal(qty_delta)
        allocated_delta = Decimal(allocated_delta)
        key = OnhandKey(wh_code, loc_code, model_code)
        current = self.store.get_record(key)
        tracking_type = current.tracking_type if current else TrackingType.NONE
        posting = _RawPosting(
            posting_id=posting_id or f"raw:{key}:{new_id()}",
            wh_code=wh_code,
            loc_code=loc_code,
            model_code=model_code,
            tracking_type=tracking_type,
            operation=infer_operation(qty_delta, allocated_delta),
            qty=abs(qty_delta) or abs(allocated_delta),
            actor=actor,
            remark=remark,
            raw=(qty_delta, allocated_delta),
        )
        return self._with_retry(lambda: self._apply(posting))

    def post(self, posting: LedgerPosting) -> OnhandRecord:
        """Apply one posting, retrying LedgerBusy within the retry budget"""
        return self._with_retry(lambda: self._apply(posting))

    def post_all(self, postings: List[LedgerPosting]) -> List[OnhandRecord]:
        """
        Apply postings one key at a time; undo the applied ones on failure

        Returns:
            Resulting records, in posting order

        Raises:
            The first posting's error, after compensation, or
            CompensationFailed when undoing an applied posting fails
        """
        applied: List[LedgerPosting] = []
        records = []
        for posting in postings:
            try:
                records.append(self.post(posting))
            except StockflowException as e:
                if applied:
                    logger.warning(
                        f"Posting {posting.posting_id} failed ({e.code}); "
                        f"undoing {len(applied)} applied posting(s)"
                    )
                    self.compensate(applied)
                raise
            applied.append(posting)
        return records

    def compensate(self, applied: List[LedgerPosting]) -> None:
        for posting in reversed(applied):
            try:
                self.post(posting.reversed())
            except StockflowException as e:
                logger.error(f"Compensation of {posting.posting_id} failed: {e.message}")
                raise CompensationFailed(
                    f"Could not undo posting {posting.posting_id}: {e.message}",
                    posting_id=posting.posting_id,
                    key=str(posting.key),
                    cause=e.code,
                ) from e

    def _with_retry(self, fn):
        return call_with_retry(
            fn,
            budget=self.retry_budget,
            backoff=self.retry_backoff,
            max_backoff=self.retry_max_backoff,
            retry_on=(LedgerBusy,),
            sleep=self._sleep,
        )

    def _apply(self, posting: LedgerPosting) -> OnhandRecord:
        key = posting.key
        with self.locks.hold(key):
            with self.store.unit(key) as unit:
                journaled = unit.has_posting(posting.posting_id)
                current = unit.get_record()
                if journaled != posting.reverse:
                    logger.debug(f"Posting {posting.posting_id} already {'undone' if posting.reverse else 'applied'}")
                    return current or OnhandRecord.empty(key, posting.tracking_type)

                record = current or OnhandRecord.empty(key, posting.tracking_type)
                if current is not None and current.tracking_type != posting.tracking_type:
                    raise ValidationError(
                        f"{key} is {current.tracking_type.value}-tracked, posting is "
                        f"{TrackingType(posting.tracking_type).value}",
                        key=str(key),
                        posting_id=posting.posting_id,
                    )

                qty_delta, allocated_delta = posting.deltas()
                onhand = record.onhand_qty + qty_delta
                allocated = record.allocated_qty + allocated_delta
                if onhand < 0 or allocated < 0 or onhand - allocated < 0:
                    raise InsufficientStock(
                        f"Insufficient stock at {key}: onhand {record.onhand_qty}, "
                        f"allocated {record.allocated_qty}, delta ({qty_delta}, {allocated_delta})",
                        key=str(key),
                        posting_id=posting.posting_id,
                        onhand_qty=record.onhand_qty,
                        allocated_qty=record.allocated_qty,
                        available_qty=record.available_qty,
                        qty_delta=qty_delta,
                        allocated_delta=allocated_delta,
                    )

                now = utcnow()
                if record.tracking_type == TrackingType.SERIAL:
                    self._move_serials(unit, posting, now)
                    _check_serial_totals(unit, key, onhand, allocated)
                elif record.tracking_type == TrackingType.LOT:
                    self._move_lots(unit, posting, now)
                    _check_lot_totals(unit, key, onhand, allocated)
                elif posting.serials or posting.removed_serials or posting.lots:
                    raise ValidationError(
                        f"{key} is not tracked; serial/lot details are not accepted",
                        key=str(key),
                        posting_id=posting.posting_id,
                    )

                record = record.model_copy(update={
                    "onhand_qty": onhand,
                    "allocated_qty": allocated,
                    "last_movement_at": now,
                    "version": record.version + 1,
                })
                unit.put_record(record)
                if posting.reverse:
                    unit.remove_history(posting.posting_id)
                else:
                    unit.add_history(OnhandHistoryEntry(
                        posting_id=posting.posting_id,
                        wh_code=key.wh_code,
                        loc_code=key.loc_code,
                        model_code=key.model_code,
                        txn_date=now,
                        operation=posting.operation,
                        qty_change=qty_delta,
                        allocated_change=allocated_delta,
                        doc_type=posting.doc_type,
                        doc_no=posting.doc_no,
                        actor=posting.actor,
                        remark=posting.remark,
                    ))

        logger.info(
            f"{'Reversed' if posting.reverse else 'Posted'} {posting.operation.value} "
            f"{posting.qty} at {key} ({posting.posting_id}): "
            f"onhand={record.onhand_qty} allocated={record.allocated_qty}"
        )
        return record

    # Serial and lot detail

    def _move_serials(self, unit: OnhandUnit, posting: LedgerPosting, now) -> None:
        op = posting.operation
        forward = not posting.reverse
        doc_no = posting.doc_no

        def take(serial_no: str, status: SerialStatus, reserved_by: Optional[str] = None) -> OnhandSerial:
            serial = unit.find_serial(serial_no)
            if (
                serial is None
                or OnhandKey(serial.wh_code, serial.loc_code, serial.model_code) != posting.key
                or serial.status != status
                or (status == SerialStatus.RESERVED and serial.reserved_doc_no != reserved_by)
            ):
                raise SerialNotAvailable(
                    f"Serial {serial_no} is not {status.value.lower()} at {posting.key}",
                    serial_no=serial_no,
                    key=str(posting.key),
                    posting_id=posting.posting_id,
                )
            return serial

        def new(serial_no: str, status: SerialStatus, reserved_by: Optional[str] = None) -> None:
            unit.add_serial(OnhandSerial(
                serial_no=serial_no,
                wh_code=posting.wh_code,
                loc_code=posting.loc_code,
                model_code=posting.model_code,
                status=status,
                reserved_doc_no=reserved_by,
                received_at=now,
                last_movement_at=now,
            ))

        def restate(serial: OnhandSerial, status: SerialStatus, reserved_by: Optional[str]) -> None:
            unit.put_serial(serial.model_copy(update={
                "status": status, "reserved_doc_no": reserved_by, "last_movement_at": now,
            }))

        if op == LedgerOperation.RECEIVE:
            for serial_no in posting.serials:
                if forward:
                    new(serial_no, SerialStatus.AVAILABLE)
                else:
                    unit.delete_serial(take(serial_no, SerialStatus.AVAILABLE).serial_no)
        elif op == LedgerOperation.RESERVE:
            for serial_no in posting.serials:
                if forward:
                    restate(take(serial_no, SerialStatus.AVAILABLE), SerialStatus.RESERVED, doc_no)
                else:
                    restate(take(serial_no, SerialStatus.RESERVED, doc_no), SerialStatus.AVAILABLE, None)
        elif op == LedgerOperation.CONSUME:
            for serial_no in posting.serials:
                if forward:
                    unit.delete_serial(take(serial_no, SerialStatus.RESERVED, doc_no).serial_no)
                else:
                    new(serial_no, SerialStatus.RESERVED, doc_no)
        elif op == LedgerOperation.RELEASE:
            for serial_no in posting.serials:
                if forward:
                    restate(take(serial_no, SerialStatus.RESERVED, doc_no), SerialStatus.AVAILABLE, None)
                else:
                    restate(take(serial_no, SerialStatus.AVAILABLE), SerialStatus.RESERVED, doc_no)
        else:
            added, removed = posting.serials, posting.removed_serials
            if not forward:
                added, removed = removed, added
            for serial_no in removed:
                unit.delete_serial(take(serial_no, SerialStatus.AVAILABLE).serial_no)
            for serial_no in added:
                new(serial_no, SerialStatus.AVAILABLE)

    def _move_lots(self, unit: OnhandUnit, posting: LedgerPosting, now) -> None:
        onhand_sign, allocated_sign = OPERATION_SIGNS[posting.operation]
        direction = -1 if posting.reverse else 1
        for movement in posting.lots:
            lot = unit.get_lot(movement.lot_code) or OnhandLot(
                wh_code=posting.wh_code,
                loc_code=posting.loc_code,
                model_code=posting.model_code,
                lot_code=movement.lot_code,
                expiry_date=movement.expiry_date,
                received_at=now,
            )
            onhand = lot.onhand_qty + movement.qty * onhand_sign * direction
            allocated = lot.allocated_qty + movement.qty * allocated_sign * direction
            if onhand < 0 or allocated < 0 or onhand < allocated:
                raise InsufficientLotQty(
                    f"Lot {movement.lot_code} at {posting.key}: onhand {lot.onhand_qty}, "
                    f"allocated {lot.allocated_qty}, movement {movement.qty}",
                    lot_code=movement.lot_code,
                    key=str(posting.key),
                    posting_id=posting.posting_id,
                )
            if onhand == 0 and allocated == 0:
                unit.delete_lot(movement.lot_code)
                continue
            unit.put_lot(lot.model_copy(update={
                "onhand_qty": onhand,
                "allocated_qty": allocated,
                "expiry_date": lot.expiry_date or movement.expiry_date,
            }))

    # Queries

    def get_onhand(self, wh_code: str, loc_code: str, model_code: str) -> OnhandRecord:
        """Current record for the key; an all-zero record if nothing has moved there"""
        key = OnhandKey(wh_code, loc_code, model_code)
        return self.store.get_record(key) or OnhandRecord.empty(key)

    def list_onhand(self, wh_code=None, loc_code=None, model_code=None) -> List[OnhandRecord]:
        return self.store.list_records(wh_code=wh_code, loc_code=loc_code, model_code=model_code)

    def list_serials(self, wh_code, loc_code, model_code, status=None) -> List[OnhandSerial]:
        return self.store.list_serials(OnhandKey(wh_code, loc_code, model_code), status)

    def list_lots(self, wh_code, loc_code, model_code, today: Optional[date] = None) -> List[OnhandLot]:
        horizon = (today or date.today()) + timedelta(days=self.near_expiry_days)
        lots = self.store.list_lots(OnhandKey(wh_code, loc_code, model_code))
        for lot in lots:
            lot.near_expiry = lot.expiry_date is not None and lot.expiry_date <= horizon
        return lots

    def history(self, wh_code=None, loc_code=None, model_code=None, doc_no=None, limit: int = 100):
        key = None
        if wh_code and loc_code and model_code:
            key = OnhandKey(wh_code, loc_code, model_code)
        return self.store.list_history(key=key, doc_no=doc_no, limit=limit)


class _RawPosting(LedgerPosting):
    """A posting whose deltas were given directly rather than derived"""
    raw: Optional[tuple] = None

    def deltas(self):
        if self.raw is None:
            return super().deltas()
        qty_delta, allocated_delta = self.raw
        if self.reverse:
            return -qty_delta, -allocated_delta
        return qty_delta, allocated_delta


def _check_serial_totals(unit: OnhandUnit, key: OnhandKey, onhand: Decimal, allocated: Decimal) -> None:
    serials = unit.serials()
    reserved = sum(1 for s in serials if s.status == SerialStatus.RESERVED)
    if Decimal(len(serials)) != onhand or Decimal(reserved) != allocated:
        raise SerialQtyMismatch(
            f"{key}: {len(serials)} serial(s) ({reserved} reserved) for onhand {onhand}, allocated {allocated}",
            key=str(key),
            serial_count=len(serials),
            reserved_count=reserved,
        )


def _check_lot_totals(unit: OnhandUnit, key: OnhandKey, onhand: Decimal, allocated: Decimal) -> None:
    lots = unit.lots()
    lot_onhand = sum((lot.onhand_qty for lot in lots), ZERO)
    lot_allocated = sum((lot.allocated_qty for lot in lots), ZERO)
    if lot_onhand != onhand or lot_allocated != allocated:
        raise LotQtyMismatch(
            f"{key}: lots hold {lot_onhand} ({lot_allocated} allocated) for onhand {onhand}, "
            f"allocated {allocated}",
            key=str(key),
            lot_onhand_qty=lot_onhand,
            lot_allocated_qty=lot_allocated,
        )
