"""Onhand ledger schemas"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, Field, computed_field

from .enums import AdjustmentStatus, DocType, LedgerOperation, SerialStatus, TrackingType


class OnhandKey(NamedTuple):
    wh_code: str
    loc_code: str
    model_code: str

    def __str__(self) -> str:
        return f"{self.wh_code}/{self.loc_code}/{self.model_code}"


# (onhand sign, allocated sign) applied to a posting quantity
OPERATION_SIGNS = {
    LedgerOperation.RECEIVE: (1, 0),
    LedgerOperation.RESERVE: (0, 1),
    LedgerOperation.CONSUME: (-1, -1),
    LedgerOperation.RELEASE: (0, -1),
    LedgerOperation.ADJUST: (1, 0),
}


class OnhandRecord(BaseModel):
    wh_code: str
    loc_code: str
    model_code: str
    tracking_type: TrackingType = TrackingType.NONE
    onhand_qty: Decimal = Decimal("0")
    allocated_qty: Decimal = Decimal("0")
    last_movement_at: Optional[datetime] = None
    version: int = 0

    @computed_field
    @property
    def available_qty(self) -> Decimal:
        return self.onhand_qty - self.allocated_qty

    @property
    def key(self) -> OnhandKey:
        return OnhandKey(self.wh_code, self.loc_code, self.model_code)

    @classmethod
    def empty(cls, key: OnhandKey, tracking_type: TrackingType = TrackingType.NONE) -> "OnhandRecord":
        return cls(
            wh_code=key.wh_code,
            loc_code=key.loc_code,
            model_code=key.model_code,
            tracking_type=tracking_type,
        )


class OnhandSerial(BaseModel):
    serial_no: str
    wh_code: str
    loc_code: str
    model_code: str
    status: SerialStatus = SerialStatus.AVAILABLE
    reserved_doc_no: Optional[str] = None
    received_at: datetime
    last_movement_at: datetime


class OnhandLot(BaseModel):
    wh_code: str
    loc_code: str
    model_code: str
    lot_code: str
    onhand_qty: Decimal = Decimal("0")
    allocated_qty: Decimal = Decimal("0")
    expiry_date: Optional[date] = None
    received_at: datetime
    near_expiry: bool = False

    @computed_field
    @property
    def available_qty(self) -> Decimal:
        return self.onhand_qty - self.allocated_qty


class OnhandHistoryEntry(BaseModel):
    posting_id: str
    wh_code: str
    loc_code: str
    model_code: str
    txn_date: datetime
    operation: LedgerOperation
    qty_change: Decimal
    allocated_change: Decimal
    doc_type: Optional[DocType] = None
    doc_no: Optional[str] = None
    actor: str = "SYSTEM"
    remark: Optional[str] = None


class LotMovement(BaseModel):
    lot_code: str
    qty: Decimal  # signed for ADJUST, positive otherwise
    expiry_date: Optional[date] = None


class LedgerPosting(BaseModel):
    """One ledger delta on one key, with the serial/lot rows it moves"""
    posting_id: str
    wh_code: str
    loc_code: str
    model_code: str
    tracking_type: TrackingType = TrackingType.NONE
    operation: LedgerOperation
    qty: Decimal
    serials: List[str] = Field(default_factory=list)
    # ADJUST only: serials no longer found at the location
    removed_serials: List[str] = Field(default_factory=list)
    lots: List[LotMovement] = Field(default_factory=list)
    reverse: bool = False
    doc_type: Optional[DocType] = None
    doc_no: Optional[str] = None
    actor: str = "SYSTEM"
    remark: Optional[str] = None

    @property
    def key(self) -> OnhandKey:
        return OnhandKey(self.wh_code, self.loc_code, self.model_code)

    def deltas(self) -> Tuple[Decimal, Decimal]:
        """(onhand delta, allocated delta) this posting applies"""
        onhand_sign, allocated_sign = OPERATION_SIGNS[self.operation]
        direction = -1 if self.reverse else 1
        return (
            self.qty * (onhand_sign * direction) if onhand_sign else Decimal("0"),
            self.qty * (allocated_sign * direction) if allocated_sign else Decimal("0"),
        )

    def reversed(self) -> "LedgerPosting":
        return self.model_copy(update={"reverse": not self.reverse})


class AdjustmentOutcome(BaseModel):
    line_id: str
    line_no: int
    model_code: str
    loc_code: str
    variance: Decimal
    status: AdjustmentStatus
    error_code: Optional[str] = None
    error: Optional[str] = None
    onhand: Optional[OnhandRecord] = None
