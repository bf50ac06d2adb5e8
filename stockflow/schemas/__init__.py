"""Stockflow schemas"""

from .enums import (
    AdjustmentStatus, CountType, DetailOperation, DocEvent, DocStatus, DocType,
    IssueType, LedgerOperation, PRE_POSTING_STATUSES, ReceiptType, SerialStatus,
    TERMINAL_STATUSES, TrackingType,
)
from .documents import (
    ActualsInput, CountLine, Document, DocumentCreate, GoodsIssue, GoodsReceipt,
    GoodsTransfer, InventoryCount, IssueLine, LineInput, LotDetails, LotEntry,
    NoDetails, PendingAction, ReceiptLine, RecountFlagRequest, SerialDetails,
    StatusHistoryEvent, TransferLine, TransferShortfall, TransitionRequest,
)
from .onhand import (
    AdjustmentOutcome, LedgerPosting, LotMovement, OnhandHistoryEntry, OnhandKey,
    OnhandLot, OnhandRecord, OnhandSerial,
)
from .variance import VarianceSummary

__all__ = [
    "AdjustmentStatus", "CountType", "DetailOperation", "DocEvent", "DocStatus",
    "DocType", "IssueType", "LedgerOperation", "PRE_POSTING_STATUSES",
    "ReceiptType", "SerialStatus", "TERMINAL_STATUSES", "TrackingType",
    "ActualsInput", "CountLine", "Document", "DocumentCreate", "GoodsIssue",
    "GoodsReceipt", "GoodsTransfer", "InventoryCount", "IssueLine", "LineInput",
    "LotDetails", "LotEntry", "NoDetails", "PendingAction", "ReceiptLine",
    "RecountFlagRequest", "SerialDetails", "StatusHistoryEvent", "TransferLine",
    "TransferShortfall", "TransitionRequest",
    "AdjustmentOutcome", "LedgerPosting", "LotMovement", "OnhandHistoryEntry",
    "OnhandKey", "OnhandLot", "OnhandRecord", "OnhandSerial",
    "VarianceSummary",
]
