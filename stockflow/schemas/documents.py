"""Document, line and tracking-detail schemas"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, ClassVar, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .enums import (
    AdjustmentStatus, CountType, DocEvent, DocStatus, DocType, IssueType,
    ReceiptType, TrackingType,
)


def new_id() -> str:
    return uuid4().hex


# Tracking details, discriminated on tracking_type

class NoDetails(BaseModel):
    tracking_type: Literal["None"] = "None"

    @property
    def total(self) -> Decimal:
        return Decimal("0")


class SerialDetails(BaseModel):
    tracking_type: Literal["Serial"] = "Serial"
    serials: List[str] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return Decimal(len(self.serials))


class LotEntry(BaseModel):
    lot_code: str = Field(..., min_length=1, max_length=40)
    qty: Decimal = Field(..., gt=0)
    expiry_date: Optional[date] = None


class LotDetails(BaseModel):
    tracking_type: Literal["Lot"] = "Lot"
    lots: List[LotEntry] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((lot.qty for lot in self.lots), Decimal("0"))

    def by_lot(self) -> dict:
        """Quantities aggregated per lot code"""
        totals: dict = {}
        for lot in self.lots:
            totals[lot.lot_code] = totals.get(lot.lot_code, Decimal("0")) + lot.qty
        return totals


LineDetails = Annotated[
    Union[NoDetails, SerialDetails, LotDetails],
    Field(discriminator="tracking_type"),
]


def empty_details(tracking_type: TrackingType):
    if tracking_type == TrackingType.SERIAL:
        return SerialDetails()
    if tracking_type == TrackingType.LOT:
        return LotDetails()
    return NoDetails()


# Audit trail

class StatusHistoryEvent(BaseModel):
    """Append-only status audit entry"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    doc_id: str
    status: DocStatus
    user: str
    timestamp: datetime
    event: Optional[DocEvent] = None
    note: Optional[str] = None


# Lines

class LineBase(BaseModel):
    ACTUAL_FIELD: ClassVar[Optional[str]] = None

    line_id: str = Field(default_factory=new_id)
    line_no: int = 0
    model_code: str = Field(..., min_length=1, max_length=30)
    model_name: Optional[str] = None
    uom: str = "EA"
    tracking_type: TrackingType = TrackingType.NONE
    loc_code: str = Field(..., min_length=1, max_length=30)
    details: LineDetails = Field(default_factory=NoDetails)
    # GT line a spawned GI/GR line was copied from
    source_line_id: Optional[str] = None

    @property
    def actual_qty(self) -> Optional[Decimal]:
        if self.ACTUAL_FIELD is None:
            return None
        return getattr(self, self.ACTUAL_FIELD)

    def set_actual(self, qty: Decimal, details) -> None:
        setattr(self, self.ACTUAL_FIELD, qty)
        self.details = details


class ReceiptLine(LineBase):
    ACTUAL_FIELD: ClassVar[Optional[str]] = "qty_received"

    qty_planned: Decimal = Field(default=Decimal("0"), ge=0)
    qty_received: Optional[Decimal] = None

    @computed_field
    @property
    def diff_qty(self) -> Optional[Decimal]:
        if self.qty_received is None:
            return None
        return self.qty_received - self.qty_planned


class IssueLine(LineBase):
    ACTUAL_FIELD: ClassVar[Optional[str]] = "qty_picked"

    qty_planned: Decimal = Field(default=Decimal("0"), ge=0)
    qty_picked: Optional[Decimal] = None


class TransferLine(LineBase):
    dest_loc_code: str = Field(..., min_length=1, max_length=30)
    qty_transfer: Decimal = Field(default=Decimal("0"), ge=0)
    qty_exported: Optional[Decimal] = None
    qty_received: Optional[Decimal] = None

    @computed_field
    @property
    def shortfall_qty(self) -> Optional[Decimal]:
        if self.qty_received is None:
            return None
        expected = self.qty_exported if self.qty_exported is not None else self.qty_transfer
        return expected - self.qty_received


class CountLine(LineBase):
    ACTUAL_FIELD: ClassVar[Optional[str]] = "counted_qty"

    system_qty: Optional[Decimal] = None
    system_details: LineDetails = Field(default_factory=NoDetails)
    counted_qty: Optional[Decimal] = None
    is_recounted: bool = False
    recount_no: int = 0
    adjustment_status: Optional[AdjustmentStatus] = None
    adjustment_error: Optional[str] = None

    @computed_field
    @property
    def variance(self) -> Optional[Decimal]:
        if self.counted_qty is None or self.system_qty is None:
            return None
        return self.counted_qty - self.system_qty


# Documents

class TransferShortfall(BaseModel):
    line_id: str
    line_no: int
    model_code: str
    expected_qty: Decimal
    received_qty: Decimal
    shortfall_qty: Decimal


class DocumentBase(BaseModel):
    id: str = Field(default_factory=new_id)
    doc_no: str
    status: DocStatus
    wh_code: str
    partner_code: Optional[str] = None
    ref_no: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    created_by: str
    version: int = 0
    history: List[StatusHistoryEvent] = Field(default_factory=list)

    def line(self, line_id: str):
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None


class GoodsReceipt(DocumentBase):
    doc_type: Literal["GR"] = "GR"
    receipt_type: ReceiptType = ReceiptType.PO
    source_wh_code: Optional[str] = None
    gt_no: Optional[str] = None
    lines: List[ReceiptLine] = Field(default_factory=list)


class GoodsIssue(DocumentBase):
    doc_type: Literal["GI"] = "GI"
    issue_type: IssueType = IssueType.SALES_ORDER
    dest_wh_code: Optional[str] = None
    gt_no: Optional[str] = None
    lines: List[IssueLine] = Field(default_factory=list)


class GoodsTransfer(DocumentBase):
    doc_type: Literal["GT"] = "GT"
    dest_wh_code: str
    expected_date: Optional[date] = None
    linked_gi_no: Optional[str] = None
    linked_gr_no: Optional[str] = None
    shortfalls: List[TransferShortfall] = Field(default_factory=list)
    lines: List[TransferLine] = Field(default_factory=list)

    @computed_field
    @property
    def source_wh_code(self) -> str:
        return self.wh_code


class InventoryCount(DocumentBase):
    doc_type: Literal["IC"] = "IC"
    count_type: CountType = CountType.FULL
    selected_locations: List[str] = Field(default_factory=list)
    selected_models: List[str] = Field(default_factory=list)
    recount_round: int = 0
    lines: List[CountLine] = Field(default_factory=list)


Document = Annotated[
    Union[GoodsReceipt, GoodsIssue, GoodsTransfer, InventoryCount],
    Field(discriminator="doc_type"),
]

DOCUMENT_CLASSES = {
    DocType.GR: GoodsReceipt,
    DocType.GI: GoodsIssue,
    DocType.GT: GoodsTransfer,
    DocType.IC: InventoryCount,
}


# Requests

class LineInput(BaseModel):
    line_id: Optional[str] = None
    model_code: str = ""
    loc_code: str = ""
    dest_loc_code: Optional[str] = None
    qty_planned: Decimal = Decimal("0")
    uom: Optional[str] = None


class DocumentCreate(BaseModel):
    doc_type: DocType
    wh_code: str = Field(..., min_length=1, max_length=30)
    dest_wh_code: Optional[str] = None
    receipt_type: Optional[ReceiptType] = None
    issue_type: Optional[IssueType] = None
    count_type: Optional[CountType] = None
    selected_locations: List[str] = Field(default_factory=list)
    selected_models: List[str] = Field(default_factory=list)
    partner_code: Optional[str] = None
    ref_no: Optional[str] = None
    note: Optional[str] = None
    expected_date: Optional[date] = None
    as_draft: bool = False
    spawn_issue: bool = True
    lines: List[LineInput] = Field(default_factory=list)


class ActualsInput(BaseModel):
    qty: Decimal = Field(..., ge=0)
    details: Optional[LineDetails] = None


class TransitionRequest(BaseModel):
    event: DocEvent
    note: Optional[str] = Field(None, max_length=500)


class RecountFlagRequest(BaseModel):
    line_ids: List[str] = Field(..., min_length=1)


class PendingAction(BaseModel):
    doc_id: str
    doc_type: DocType
    doc_no: str
    status: DocStatus
    created_at: datetime
    created_by: str
